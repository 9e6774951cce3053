from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class _Moments:
    m: np.ndarray
    v: np.ndarray
    t: int = 0


class Adam:
    """Adam over in-place numpy parameters, keyed by caller-chosen names.

    Each parameter may carry its own learning rate so embedding tables and
    network weights can be stepped at different scales in one update.
    """

    def __init__(self, *, beta1: float = 0.9, beta2: float = 0.999, eps: float = 1e-8) -> None:
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.eps = float(eps)
        self._state: dict[str, _Moments] = {}

    def step(self, param: np.ndarray, grad: np.ndarray, *, name: str, lr: float) -> None:
        state = self._state.get(name)
        if state is None or state.m.shape != param.shape:
            state = _Moments(m=np.zeros_like(param), v=np.zeros_like(param))
            self._state[name] = state

        state.t += 1
        state.m *= self.beta1
        state.m += (1.0 - self.beta1) * grad
        state.v *= self.beta2
        state.v += (1.0 - self.beta2) * grad * grad

        m_hat = state.m / (1.0 - self.beta1**state.t)
        v_hat = state.v / (1.0 - self.beta2**state.t)
        param -= lr * m_hat / (np.sqrt(v_hat) + self.eps)
