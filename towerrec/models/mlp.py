from __future__ import annotations

import logging
import math
from typing import Hashable, Sequence

import numpy as np

from ..data import Interaction
from ..encoders import PairEncoder
from ..errors import DegenerateTargetError, NumericInstabilityError, UninitializedModelError
from ..layers import DenseLayer, ForwardCache, backward, build_layers, forward, sgd_update
from ..utils import sigmoid
from .base import MAX_RATING, MIN_RATING, RatingModel, clamp_rating


logger = logging.getLogger(__name__)


def rating_to_target(rating: float, *, epsilon: float = 0.05) -> float:
    """Logit of the rating's position in (1, 5): ln((r - 1) / (5 - r)).

    Ratings at the bounds are pulled `epsilon` inside so the target stays finite.
    """
    r = float(rating)
    if not (MIN_RATING <= r <= MAX_RATING) or math.isnan(r):
        raise DegenerateTargetError(f"rating {rating!r} outside [{MIN_RATING}, {MAX_RATING}]")
    r = min(MAX_RATING - epsilon, max(MIN_RATING + epsilon, r))
    return math.log((r - MIN_RATING) / (MAX_RATING - r))


def output_to_rating(output: np.ndarray | float) -> np.ndarray | float:
    scaled = MIN_RATING + (MAX_RATING - MIN_RATING) * sigmoid(output)
    return np.clip(scaled, MIN_RATING, MAX_RATING)


class MLPRatingModel(RatingModel):
    """Feed-forward regression from an encoded (user, item) pair to a rating.

    The network predicts the logit target; `predict` maps it back with
    1 + 4 * sigmoid(output). Trained per example with SGD; the learning rate
    decays by `lr_decay` after every epoch whose loss got worse.
    """

    kind = "mlp"

    def __init__(
        self,
        encoder: PairEncoder,
        *,
        hidden_sizes: Sequence[int] = (32, 16),
        lr: float = 0.005,
        l2: float = 1e-4,
        dropout: float = 0.2,
        lr_decay: float = 0.95,
        target_epsilon: float = 0.05,
        min_epochs: int = 20,
        tolerance: float = 1e-4,
        min_interactions: int = 10,
        seed: int | None = None,
    ) -> None:
        super().__init__(min_interactions=min_interactions, seed=seed)
        self.encoder = encoder
        self.hidden_sizes = tuple(int(h) for h in hidden_sizes)
        self.lr = float(lr)
        self.current_lr = float(lr)
        self.l2 = float(l2)
        self.dropout = float(dropout)
        self.lr_decay = float(lr_decay)
        self.target_epsilon = float(target_epsilon)
        self.min_epochs = int(min_epochs)
        self.tolerance = float(tolerance)
        self.layers: list[DenseLayer] | None = None

    def _init_parameters(self) -> None:
        sizes = [int(self.encoder.dim), *self.hidden_sizes, 1]
        self.layers = build_layers(self.rng, sizes)
        self.current_lr = self.lr

    def _require_layers(self) -> list[DenseLayer]:
        self._require_initialized()
        if self.layers is None:
            raise UninitializedModelError("network layers are not built")
        return self.layers

    def forward(self, x: np.ndarray, *, training: bool = False) -> ForwardCache:
        return forward(
            self._require_layers(),
            x,
            training=training,
            dropout_rate=self.dropout if training else 0.0,
            rng=self.rng,
        )

    def backward(self, cache: ForwardCache, error: float) -> None:
        layers = self._require_layers()
        grads, _ = backward(layers, cache, np.array([[error]], dtype=np.float64))
        sgd_update(layers, grads, lr=self.current_lr, l2=self.l2)

    def train_step(self, user_id: Hashable, item_id: Hashable, rating: float) -> float:
        target = rating_to_target(rating, epsilon=self.target_epsilon)
        cache = self.forward(self.encoder.encode(user_id, item_id), training=True)
        error = float(cache.output[0, 0]) - target
        if not math.isfinite(error):
            raise NumericInstabilityError(f"non-finite output for user_id={user_id!r} item_id={item_id!r}")
        self.backward(cache, error)
        return error * error

    def train(self, interactions: Sequence[Interaction], epochs: int) -> list[float]:
        self._require_layers()
        self._check_training_data(interactions)
        # Fail fast on unknown ids before touching any weights.
        self._encode_interactions(interactions)

        logger.info(
            "MLP training: examples=%d input_dim=%d hidden=%s epochs=%d lr=%.5f",
            len(interactions),
            self.encoder.dim,
            list(self.hidden_sizes),
            int(epochs),
            self.current_lr,
        )

        losses: list[float] = []
        for epoch in range(int(epochs)):
            total = 0.0
            n = 0
            for j in self.rng.permutation(len(interactions)):
                inter = interactions[int(j)]
                try:
                    total += self.train_step(inter.user_id, inter.item_id, inter.rating)
                except NumericInstabilityError as exc:
                    logger.warning("MLP epoch=%d skipped step: %s", epoch + 1, exc)
                    continue
                n += 1

            if n == 0:
                raise NumericInstabilityError(f"every step of epoch {epoch + 1} was skipped")

            loss = total / n
            if losses and loss > losses[-1]:
                self.current_lr *= self.lr_decay
                logger.info("MLP loss went up; lr -> %.6f", self.current_lr)
            losses.append(loss)
            logger.info("MLP epoch=%d loss=%.6f", epoch + 1, loss)

            if len(losses) >= max(2, self.min_epochs) and abs(losses[-1] - losses[-2]) < self.tolerance:
                logger.info("MLP converged after %d epochs", epoch + 1)
                break

        return losses

    def _check_ids(self, user_id: Hashable, item_ids: Sequence[Hashable]) -> None:
        """KeyError for ids outside the initialized sets, whatever the encoder would accept."""
        users, items = self._require_initialized()
        users.index(user_id)
        items.indices(item_ids)

    def predict(self, user_id: Hashable, item_id: Hashable) -> float:
        self._check_ids(user_id, [item_id])
        cache = self.forward(self.encoder.encode(user_id, item_id), training=False)
        return clamp_rating(float(output_to_rating(cache.output[0, 0])))

    def score_items(self, user_id: Hashable, item_ids: Sequence[Hashable]) -> np.ndarray:
        self._require_layers()
        self._check_ids(user_id, item_ids)
        if len(item_ids) == 0:
            return np.zeros(0, dtype=np.float64)
        x = np.stack([self.encoder.encode(user_id, item_id) for item_id in item_ids])
        cache = self.forward(x, training=False)
        return np.asarray(output_to_rating(cache.output[:, 0]), dtype=np.float64)
