from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ReproducibilityConfig:
    seed: int = 42


def setup_logging(level: int | str = "INFO") -> None:
    """Configure root logging once; later calls only change the level.

    Accepts "debug" as well as "DEBUG" so values can come straight from YAML or env.
    """
    if isinstance(level, str):
        level = level.strip().upper()
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def set_global_seed(cfg: ReproducibilityConfig) -> None:
    """Seed the process-wide RNG sources.

    Models draw from their own `np.random.Generator` (see `make_rng`); this only
    covers code that still reaches for the legacy global state.
    """
    random.seed(cfg.seed)
    np.random.seed(cfg.seed)
    os.environ["PYTHONHASHSEED"] = str(cfg.seed)


def make_rng(seed: int | None) -> np.random.Generator:
    return np.random.default_rng(seed)


def sigmoid(x: np.ndarray | float) -> np.ndarray | float:
    """Numerically stable logistic function."""
    x_arr = np.atleast_1d(np.asarray(x, dtype=np.float64))
    out = np.empty_like(x_arr)
    pos = x_arr >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-x_arr[pos]))
    exp_x = np.exp(x_arr[~pos])
    out[~pos] = exp_x / (1.0 + exp_x)
    if np.ndim(x) == 0:
        return float(out[0])
    return out.reshape(np.shape(x))


def is_converging(losses: list[float], *, window: int = 5, threshold: float = 1e-3) -> bool:
    """True when the variance of the last `window` losses falls below `threshold`."""
    if len(losses) < window:
        return False
    recent = np.asarray(losses[-window:], dtype=np.float64)
    return float(recent.var()) < float(threshold)
