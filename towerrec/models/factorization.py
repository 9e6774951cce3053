from __future__ import annotations

import logging
from typing import Hashable, Sequence

import numpy as np

from ..data import Interaction
from ..errors import NumericInstabilityError
from .base import RatingModel, clamp_rating


logger = logging.getLogger(__name__)


class FactorizationModel(RatingModel):
    """Biased MF: clamp(global + b_u + b_i + dot(p_u, q_i), 1, 5).

    Trained one interaction at a time with L2-regularized SGD. Unknown users or
    items are answered with the global bias alone (cold start); no parameters
    are ever created at prediction time.
    """

    kind = "factorization"

    def __init__(
        self,
        *,
        embed_dim: int = 32,
        lr: float = 0.01,
        l2: float = 0.02,
        init_std: float = 0.1,
        min_epochs: int = 10,
        tolerance: float = 1e-4,
        min_interactions: int = 10,
        seed: int | None = None,
    ) -> None:
        super().__init__(min_interactions=min_interactions, seed=seed)
        self.embed_dim = int(embed_dim)
        self.lr = float(lr)
        self.l2 = float(l2)
        self.init_std = float(init_std)
        self.min_epochs = int(min_epochs)
        self.tolerance = float(tolerance)

        self.user_embed: np.ndarray | None = None
        self.item_embed: np.ndarray | None = None
        self.user_bias: np.ndarray | None = None
        self.item_bias: np.ndarray | None = None
        self.global_bias = 0.0

    def _init_parameters(self) -> None:
        n_users, n_items = len(self.user_index), len(self.item_index)
        self.user_embed = self.rng.normal(0.0, self.init_std, size=(n_users, self.embed_dim))
        self.item_embed = self.rng.normal(0.0, self.init_std, size=(n_items, self.embed_dim))
        self.user_bias = np.zeros(n_users, dtype=np.float64)
        self.item_bias = np.zeros(n_items, dtype=np.float64)
        self.global_bias = 0.0

    def raw_score(self, user_idx: int, item_idx: int) -> float:
        """Un-clamped prediction used for the gradient."""
        return float(
            self.global_bias
            + self.user_bias[user_idx]
            + self.item_bias[item_idx]
            + self.user_embed[user_idx] @ self.item_embed[item_idx]
        )

    def predict_index(self, user_idx: int | None, item_idx: int | None) -> float:
        users, items = self._require_initialized()
        if user_idx is None or item_idx is None or not (0 <= user_idx < len(users) and 0 <= item_idx < len(items)):
            return clamp_rating(self.global_bias)
        return clamp_rating(self.raw_score(user_idx, item_idx))

    def predict(self, user_id: Hashable, item_id: Hashable) -> float:
        users, items = self._require_initialized()
        return self.predict_index(users.get(user_id), items.get(item_id))

    def train_step(self, user_idx: int, item_idx: int, rating: float) -> float:
        """One SGD update on a single rating; returns the squared error.

        Both embedding updates read the pre-update vectors.
        """
        p = self.user_embed[user_idx].copy()
        q = self.item_embed[item_idx].copy()
        error = self.raw_score(user_idx, item_idx) - float(rating)
        if not np.isfinite(error):
            raise NumericInstabilityError(f"non-finite error for user_idx={user_idx} item_idx={item_idx}")

        new_p = p - self.lr * (error * q + self.l2 * p)
        new_q = q - self.lr * (error * p + self.l2 * q)
        if not (np.all(np.isfinite(new_p)) and np.all(np.isfinite(new_q))):
            raise NumericInstabilityError(f"non-finite update for user_idx={user_idx} item_idx={item_idx}")

        self.user_embed[user_idx] = new_p
        self.item_embed[item_idx] = new_q
        self.user_bias[user_idx] -= self.lr * error
        self.item_bias[item_idx] -= self.lr * error
        return error * error

    def train(self, interactions: Sequence[Interaction], epochs: int) -> list[float]:
        """Per-epoch MSE; early stop once the epoch loss stops moving."""
        self._require_initialized()
        self._check_training_data(interactions)
        u_idx, i_idx, ratings = self._encode_interactions(interactions)

        self.global_bias = float(ratings.mean())
        logger.info(
            "MF training: users=%d items=%d ratings=%d global_bias=%.4f epochs=%d",
            len(self.user_index),
            len(self.item_index),
            len(ratings),
            self.global_bias,
            int(epochs),
        )

        losses: list[float] = []
        for epoch in range(int(epochs)):
            total = 0.0
            n = 0
            for j in self.rng.permutation(len(ratings)):
                try:
                    total += self.train_step(int(u_idx[j]), int(i_idx[j]), float(ratings[j]))
                except NumericInstabilityError as exc:
                    logger.warning("MF epoch=%d skipped step: %s", epoch + 1, exc)
                    continue
                n += 1

            if n == 0:
                raise NumericInstabilityError(f"every step of epoch {epoch + 1} was skipped")

            loss = total / n
            losses.append(loss)
            logger.info("MF epoch=%d mse=%.6f", epoch + 1, loss)

            if len(losses) >= max(2, self.min_epochs) and abs(losses[-1] - losses[-2]) < self.tolerance:
                logger.info("MF converged after %d epochs", epoch + 1)
                break

        return losses

    def score_items(self, user_id: Hashable, item_ids: Sequence[Hashable]) -> np.ndarray:
        users, items = self._require_initialized()
        u = self.user_embed[users.index(user_id)]
        return self.item_embed[items.indices(item_ids)] @ u

    def item_embeddings(self) -> np.ndarray:
        self._require_initialized()
        return self.item_embed
