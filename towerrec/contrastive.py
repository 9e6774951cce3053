"""In-batch sampled-softmax training for user/item towers.

Within a minibatch of B positive (user, item) pairs, row i of the similarity
matrix S = U @ V.T scores user i against every item in the batch; item i is
the positive and the other B - 1 items act as negatives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

import numpy as np

from .errors import NumericInstabilityError
from .optim import Adam


logger = logging.getLogger(__name__)


class Tower(Protocol):
    is_network: bool

    def forward(
        self, idx: np.ndarray, *, training: bool = False, rng: np.random.Generator | None = None
    ) -> tuple[np.ndarray, Any]: ...

    def gradients(self, cache: Any, grad_out: np.ndarray, *, l2: float) -> list[tuple[str, np.ndarray, np.ndarray]]: ...


@dataclass(frozen=True)
class BatchResult:
    epoch: int
    batch: int
    n_batches: int
    size: int
    loss: float | None  # None when no update was applied


def in_batch_softmax_loss(
    user_vecs: np.ndarray,
    item_vecs: np.ndarray,
    *,
    temperature: float = 1.0,
) -> tuple[float, np.ndarray, np.ndarray]:
    """Mean row-wise softmax cross-entropy with diagonal labels.

    Returns (loss, dL/dU, dL/dV).
    """
    u = np.asarray(user_vecs, dtype=np.float64)
    v = np.asarray(item_vecs, dtype=np.float64)
    if u.shape != v.shape or u.ndim != 2:
        raise ValueError(f"expected two (B, D) arrays of equal shape, got {u.shape} and {v.shape}")
    b = u.shape[0]
    if b == 0:
        raise NumericInstabilityError("empty batch")

    tau = max(float(temperature), 1e-6)
    logits = (u @ v.T) / tau
    shifted = logits - logits.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    probs = exp / exp.sum(axis=1, keepdims=True)
    log_probs = shifted - np.log(exp.sum(axis=1, keepdims=True))
    loss = float(-np.mean(np.diag(log_probs)))

    d_logits = (probs - np.eye(b)) / (b * tau)
    grad_u = d_logits @ v
    grad_v = d_logits.T @ u
    return loss, grad_u, grad_v


class ContrastiveTrainer:
    """One Adam update per minibatch over every parameter backing both towers.

    Embedding tables step with `embedding_lr`; network weights with the
    smaller `tower_lr`.
    """

    def __init__(
        self,
        user_tower: Tower,
        item_tower: Tower,
        *,
        embedding_lr: float = 0.01,
        tower_lr: float = 0.001,
        l2: float = 1e-4,
        temperature: float = 1.0,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.user_tower = user_tower
        self.item_tower = item_tower
        self.embedding_lr = float(embedding_lr)
        self.tower_lr = float(tower_lr)
        self.l2 = float(l2)
        self.temperature = float(temperature)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.optimizer = Adam()
        self.batch_losses: list[float] = []

    def _lr_for(self, tower: Tower) -> float:
        return self.tower_lr if tower.is_network else self.embedding_lr

    def train_step(self, batch_users: np.ndarray, batch_items: np.ndarray) -> float:
        """Returns the batch loss. Single-pair batches have no negatives: loss 0.0, no update."""
        users = np.asarray(batch_users, dtype=np.int64)
        items = np.asarray(batch_items, dtype=np.int64)
        if users.shape != items.shape:
            raise ValueError("batch_users and batch_items must have the same length")
        if users.size == 0:
            raise NumericInstabilityError("empty batch")
        if users.size == 1:
            logger.debug("batch of one pair has no in-batch negatives; skipping update")
            return 0.0

        user_vecs, user_cache = self.user_tower.forward(users, training=True, rng=self.rng)
        item_vecs, item_cache = self.item_tower.forward(items, training=True, rng=self.rng)
        loss, grad_u, grad_v = in_batch_softmax_loss(user_vecs, item_vecs, temperature=self.temperature)
        if not np.isfinite(loss):
            raise NumericInstabilityError(f"non-finite in-batch loss ({loss})")

        updates = [
            (self._lr_for(self.user_tower), self.user_tower.gradients(user_cache, grad_u, l2=self.l2)),
            (self._lr_for(self.item_tower), self.item_tower.gradients(item_cache, grad_v, l2=self.l2)),
        ]
        # Check everything before the first write.
        for _, params in updates:
            for name, _, grad in params:
                if not np.all(np.isfinite(grad)):
                    raise NumericInstabilityError(f"non-finite gradient for {name}")

        for lr, params in updates:
            for name, param, grad in params:
                self.optimizer.step(param, grad, name=name, lr=lr)

        self.batch_losses.append(loss)
        return loss

    def iter_epoch(
        self,
        user_idx: np.ndarray,
        item_idx: np.ndarray,
        *,
        batch_size: int,
        epoch: int = 0,
        shuffle: bool = True,
    ) -> Iterator[BatchResult]:
        """Yield after every minibatch; stopping the iteration keeps applied updates."""
        user_idx = np.asarray(user_idx, dtype=np.int64)
        item_idx = np.asarray(item_idx, dtype=np.int64)
        n = int(user_idx.shape[0])
        order = self.rng.permutation(n) if shuffle else np.arange(n)
        size = max(1, int(batch_size))
        n_batches = (n + size - 1) // size

        for b in range(n_batches):
            sel = order[b * size : (b + 1) * size]
            loss: float | None = None
            if sel.size == 1:
                # Single pair: no in-batch negatives.
                logger.debug("epoch=%d batch=%d has a single pair; no update", epoch + 1, b)
            else:
                try:
                    loss = self.train_step(user_idx[sel], item_idx[sel])
                except NumericInstabilityError as exc:
                    logger.warning("epoch=%d batch=%d skipped: %s", epoch + 1, b, exc)
            if b % 20 == 0:
                logger.debug("epoch=%d batch=%d/%d loss=%s", epoch + 1, b, n_batches, loss)
            yield BatchResult(epoch=epoch, batch=b, n_batches=n_batches, size=int(sel.size), loss=loss)

    def train_epoch(self, user_idx: np.ndarray, item_idx: np.ndarray, *, batch_size: int, epoch: int = 0) -> float:
        """Mean loss over the batches that produced an update.

        Single-pair batches are left out. An epoch made only of them reports 0.0.
        """
        results = list(self.iter_epoch(user_idx, item_idx, batch_size=batch_size, epoch=epoch))
        losses = [r.loss for r in results if r.loss is not None]
        if not any(r.size > 1 for r in results):
            return 0.0
        if not losses:
            raise NumericInstabilityError(f"every batch of epoch {epoch + 1} was skipped")
        return float(np.mean(losses))
