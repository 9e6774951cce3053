"""Dense layers as plain records, with forward/backward as free functions.

Hidden layers use leaky ReLU (slope 0.01) in the forward pass and its exact
derivative in the backward pass. Dropout is inverted: kept units are scaled by
1/(1-p) at training time, so inference needs no rescaling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .errors import NumericInstabilityError


LEAKY_SLOPE = 0.01


@dataclass
class DenseLayer:
    weights: np.ndarray  # (fan_out, fan_in)
    biases: np.ndarray  # (fan_out,)

    @property
    def fan_in(self) -> int:
        return int(self.weights.shape[1])

    @property
    def fan_out(self) -> int:
        return int(self.weights.shape[0])


@dataclass
class ForwardCache:
    output: np.ndarray
    # activations[0] is the input; activations[l] is what layer l consumed.
    activations: list[np.ndarray] = field(default_factory=list)
    pre_activations: list[np.ndarray] = field(default_factory=list)
    masks: list[np.ndarray | None] = field(default_factory=list)


@dataclass
class LayerGradient:
    weights: np.ndarray
    biases: np.ndarray


def he_dense(rng: np.random.Generator, fan_in: int, fan_out: int) -> DenseLayer:
    std = np.sqrt(2.0 / float(fan_in))
    return DenseLayer(
        weights=rng.normal(0.0, std, size=(int(fan_out), int(fan_in))),
        biases=np.zeros(int(fan_out), dtype=np.float64),
    )


def build_layers(rng: np.random.Generator, sizes: Sequence[int]) -> list[DenseLayer]:
    """He-initialized layers chaining sizes[0] -> ... -> sizes[-1]."""
    if len(sizes) < 2:
        raise ValueError("need at least input and output sizes")
    return [he_dense(rng, sizes[i], sizes[i + 1]) for i in range(len(sizes) - 1)]


def leaky_relu(x: np.ndarray, slope: float = LEAKY_SLOPE) -> np.ndarray:
    return np.where(x > 0, x, slope * x)


def leaky_relu_grad(x: np.ndarray, slope: float = LEAKY_SLOPE) -> np.ndarray:
    return np.where(x > 0, 1.0, slope)


def forward(
    layers: Sequence[DenseLayer],
    x: np.ndarray,
    *,
    training: bool = False,
    dropout_rate: float = 0.0,
    rng: np.random.Generator | None = None,
) -> ForwardCache:
    """Run a (batch of) input vector(s) through the network.

    `x` may be a single vector (fan_in,) or a batch (B, fan_in); the cache always
    holds 2-D arrays and `output` has shape (B, fan_out).
    """
    a = np.atleast_2d(np.asarray(x, dtype=np.float64))
    if training and dropout_rate > 0.0 and rng is None:
        raise ValueError("rng is required for dropout in training mode")

    cache = ForwardCache(output=a, activations=[a])
    last = len(layers) - 1
    for i, layer in enumerate(layers):
        z = a @ layer.weights.T + layer.biases
        cache.pre_activations.append(z)
        if i == last:
            a = z
            cache.masks.append(None)
            break

        a = leaky_relu(z)
        mask = None
        if training and dropout_rate > 0.0:
            keep = 1.0 - float(dropout_rate)
            mask = (rng.random(a.shape) < keep).astype(np.float64) / keep
            a = a * mask
        cache.masks.append(mask)
        cache.activations.append(a)

    cache.output = a
    return cache


def backward(
    layers: Sequence[DenseLayer],
    cache: ForwardCache,
    grad_output: np.ndarray,
) -> tuple[list[LayerGradient], np.ndarray]:
    """Back-propagate d(loss)/d(output) through the network.

    Returns per-layer gradients (same order as `layers`) and d(loss)/d(input).
    Gradients are summed over the batch rows; scale `grad_output` for a mean.
    """
    delta = np.atleast_2d(np.asarray(grad_output, dtype=np.float64))
    grads: list[LayerGradient] = [None] * len(layers)  # type: ignore[list-item]

    for i in range(len(layers) - 1, -1, -1):
        a_prev = cache.activations[i]
        grads[i] = LayerGradient(weights=delta.T @ a_prev, biases=delta.sum(axis=0))
        delta = delta @ layers[i].weights
        if i > 0:
            delta = delta * leaky_relu_grad(cache.pre_activations[i - 1])
            mask = cache.masks[i - 1]
            if mask is not None:
                delta = delta * mask

    return grads, delta


def check_finite(grads: Sequence[LayerGradient]) -> None:
    for i, g in enumerate(grads):
        if not (np.all(np.isfinite(g.weights)) and np.all(np.isfinite(g.biases))):
            raise NumericInstabilityError(f"non-finite gradient in layer {i}")


def sgd_update(
    layers: Sequence[DenseLayer],
    grads: Sequence[LayerGradient],
    *,
    lr: float,
    l2: float = 0.0,
) -> None:
    """In place: w -= lr * (g + l2 * w); b -= lr * g."""
    check_finite(grads)
    for layer, g in zip(layers, grads):
        layer.weights -= lr * (g.weights + l2 * layer.weights)
        layer.biases -= lr * g.biases
