"""Power-iteration PCA for inspecting embedding tables in 2-D.

This is a fixed-iteration approximation: each component gets exactly
`iterations` matrix-vector products, with no convergence tolerance.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class PCAProjection:
    coordinates: np.ndarray  # (N, k), input order
    components: np.ndarray  # (k, D), unit rows (zero rows for degenerate input)
    eigenvalues: np.ndarray  # (k,)
    mean: np.ndarray  # (D,)


def power_iteration(matrix: np.ndarray, *, iterations: int = 10) -> tuple[np.ndarray, float]:
    """Approximate the dominant eigenvector of a symmetric matrix.

    Starts from 1/sqrt(D) in every coordinate. A zero-norm iterate means the
    matrix has no variance left along the current direction; the zero vector
    is returned with eigenvalue 0.
    """
    dim = matrix.shape[0]
    vec = np.full(dim, 1.0 / np.sqrt(dim))
    for _ in range(int(iterations)):
        nxt = matrix @ vec
        norm = float(np.linalg.norm(nxt))
        if norm == 0.0 or not np.isfinite(norm):
            return np.zeros(dim), 0.0
        vec = nxt / norm
    return vec, float(vec @ matrix @ vec)


def fit_projection(vectors: np.ndarray, k: int = 2, *, iterations: int = 10) -> PCAProjection:
    """Top-k principal directions of `vectors` by power iteration with deflation.

    After each component the covariance is deflated by eigenvalue * v v^T, not
    by the bare outer product v v^T; only the scaled form removes the found
    direction, so later components are the true next principal directions.
    """
    x = np.asarray(vectors, dtype=np.float64)
    if x.ndim != 2 or x.shape[0] == 0:
        raise ValueError(f"expected a non-empty (N, D) array, got shape={x.shape}")
    n, dim = x.shape
    if not 1 <= int(k) <= dim:
        raise ValueError(f"k must be in [1, {dim}], got {k}")

    mean = x.mean(axis=0)
    centered = x - mean
    cov = centered.T @ centered / float(n)

    components = np.zeros((int(k), dim))
    eigenvalues = np.zeros(int(k))
    for c in range(int(k)):
        vec, eig = power_iteration(cov, iterations=iterations)
        components[c] = vec
        eigenvalues[c] = eig
        cov = cov - eig * np.outer(vec, vec)

    return PCAProjection(
        coordinates=centered @ components.T,
        components=components,
        eigenvalues=eigenvalues,
        mean=mean,
    )


def project_embeddings(vectors: np.ndarray, k: int = 2, *, iterations: int = 10) -> np.ndarray:
    """k-dimensional coordinates for each input vector, same order as the input."""
    return fit_projection(vectors, k, iterations=iterations).coordinates


def evenly_spaced_sample(n: int, size: int = 500) -> np.ndarray:
    """Indices floor(i * n / size) for i < min(size, n)."""
    size = min(int(size), int(n))
    if size <= 0:
        return np.zeros(0, dtype=np.int64)
    return (np.arange(size) * int(n)) // size
