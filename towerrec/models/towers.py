from __future__ import annotations

import logging
from typing import Hashable, Mapping, Sequence

import numpy as np

from ..contrastive import ContrastiveTrainer
from ..data import Interaction
from ..errors import UninitializedModelError
from ..features import feature_matrix
from ..layers import ForwardCache, backward, build_layers, forward
from ..utils import is_converging
from .base import RatingModel, clamp_rating
from .mlp import output_to_rating


logger = logging.getLogger(__name__)


class EmbeddingTower:
    """Plain lookup table: index -> row."""

    is_network = False

    def __init__(self, n: int, dim: int, *, rng: np.random.Generator, init_std: float = 0.1, name: str = "table") -> None:
        self.name = name
        self.table = rng.normal(0.0, float(init_std), size=(int(n), int(dim)))

    def forward(
        self, idx: np.ndarray, *, training: bool = False, rng: np.random.Generator | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        idx = np.asarray(idx, dtype=np.int64)
        return self.table[idx], idx

    def gradients(self, cache: np.ndarray, grad_out: np.ndarray, *, l2: float) -> list[tuple[str, np.ndarray, np.ndarray]]:
        full = np.zeros_like(self.table)
        np.add.at(full, cache, grad_out)
        return [(f"{self.name}.table", self.table, full)]

    def embeddings(self) -> np.ndarray:
        return self.table


class MLPTower:
    """Feature row -> hidden (leaky ReLU, dropout) -> linear embedding."""

    is_network = True

    def __init__(
        self,
        features: np.ndarray,
        *,
        hidden_units: int,
        dim: int,
        rng: np.random.Generator,
        dropout: float = 0.2,
        name: str = "mlp",
    ) -> None:
        self.name = name
        self.features = np.asarray(features, dtype=np.float64)
        if self.features.ndim != 2:
            raise ValueError(f"features must be 2-D, got shape={self.features.shape}")
        self.dropout = float(dropout)
        self.layers = build_layers(rng, [self.features.shape[1], int(hidden_units), int(dim)])

    def forward(
        self, idx: np.ndarray, *, training: bool = False, rng: np.random.Generator | None = None
    ) -> tuple[np.ndarray, ForwardCache]:
        cache = forward(
            self.layers,
            self.features[np.asarray(idx, dtype=np.int64)],
            training=training,
            dropout_rate=self.dropout if training else 0.0,
            rng=rng,
        )
        return cache.output, cache

    def gradients(self, cache: ForwardCache, grad_out: np.ndarray, *, l2: float) -> list[tuple[str, np.ndarray, np.ndarray]]:
        grads, _ = backward(self.layers, cache, grad_out)
        out: list[tuple[str, np.ndarray, np.ndarray]] = []
        for i, (layer, g) in enumerate(zip(self.layers, grads)):
            out.append((f"{self.name}.{i}.weights", layer.weights, g.weights + l2 * layer.weights))
            out.append((f"{self.name}.{i}.biases", layer.biases, g.biases))
        return out

    def embeddings(self) -> np.ndarray:
        return forward(self.layers, self.features, training=False).output


class TwoTowerModel(RatingModel):
    """User tower and item tower trained with in-batch negatives.

    tower_type="simple" backs both towers with embedding tables; "mlp" runs the
    user statistics and item genre vectors through small networks and needs
    `set_user_features` / `set_item_features` after `initialize`.
    """

    def __init__(
        self,
        tower_type: str = "simple",
        *,
        embed_dim: int = 32,
        hidden_units: int = 64,
        init_std: float = 0.1,
        dropout: float = 0.2,
        embedding_lr: float = 0.01,
        tower_lr: float = 0.001,
        l2: float = 1e-4,
        temperature: float = 1.0,
        batch_size: int = 256,
        convergence_threshold: float | None = 1e-3,
        convergence_min_epochs: int = 6,
        min_interactions: int = 10,
        seed: int | None = None,
    ) -> None:
        if tower_type not in ("simple", "mlp"):
            raise ValueError(f"tower_type must be 'simple' or 'mlp', got {tower_type!r}")
        super().__init__(min_interactions=min_interactions, seed=seed)
        self.tower_type = tower_type
        self.kind = "simple" if tower_type == "simple" else "mlp_tower"
        self.embed_dim = int(embed_dim)
        self.hidden_units = int(hidden_units)
        self.init_std = float(init_std)
        self.dropout = float(dropout)
        self.embedding_lr = float(embedding_lr)
        self.tower_lr = float(tower_lr)
        self.l2 = float(l2)
        self.temperature = float(temperature)
        self.batch_size = int(batch_size)
        self.convergence_threshold = convergence_threshold
        self.convergence_min_epochs = int(convergence_min_epochs)

        self._user_tower: EmbeddingTower | MLPTower | None = None
        self._item_tower: EmbeddingTower | MLPTower | None = None
        self.trainer: ContrastiveTrainer | None = None

    def _init_parameters(self) -> None:
        self.trainer = None
        if self.tower_type == "simple":
            self._user_tower = EmbeddingTower(
                len(self.user_index), self.embed_dim, rng=self.rng, init_std=self.init_std, name="user"
            )
            self._item_tower = EmbeddingTower(
                len(self.item_index), self.embed_dim, rng=self.rng, init_std=self.init_std, name="item"
            )
        else:
            self._user_tower = None
            self._item_tower = None

    def _refresh_tower(self, tower: MLPTower | None, mat: np.ndarray, name: str) -> MLPTower:
        """Swap the feature rows in place when the width is unchanged, keeping weights and optimizer state."""
        if isinstance(tower, MLPTower) and tower.features.shape == mat.shape:
            tower.features[...] = mat
            return tower
        self.trainer = None
        return MLPTower(mat, hidden_units=self.hidden_units, dim=self.embed_dim, rng=self.rng, dropout=self.dropout, name=name)

    def set_user_features(self, features: Mapping[Hashable, np.ndarray], *, dim: int | None = None) -> None:
        users, _ = self._require_initialized()
        if self.tower_type != "mlp":
            raise ValueError("user features are only used by tower_type='mlp'")
        if not features:
            raise ValueError("user feature mapping is empty")
        dim = int(dim) if dim is not None else len(next(iter(features.values())))
        self._user_tower = self._refresh_tower(self._user_tower, feature_matrix(users.classes, dict(features), dim), "user")

    def set_item_features(self, features: Mapping[Hashable, np.ndarray], *, dim: int | None = None) -> None:
        _, items = self._require_initialized()
        if self.tower_type != "mlp":
            raise ValueError("item features are only used by tower_type='mlp'")
        if not features:
            raise ValueError("item feature mapping is empty")
        dim = int(dim) if dim is not None else len(next(iter(features.values())))
        self._item_tower = self._refresh_tower(self._item_tower, feature_matrix(items.classes, dict(features), dim), "item")

    @property
    def user_tower(self) -> EmbeddingTower | MLPTower:
        self._require_initialized()
        if self._user_tower is None:
            raise UninitializedModelError("user feature table is not set")
        return self._user_tower

    @property
    def item_tower(self) -> EmbeddingTower | MLPTower:
        self._require_initialized()
        if self._item_tower is None:
            raise UninitializedModelError("item feature table is not set")
        return self._item_tower

    def _get_trainer(self) -> ContrastiveTrainer:
        if self.trainer is None:
            self.trainer = ContrastiveTrainer(
                self.user_tower,
                self.item_tower,
                embedding_lr=self.embedding_lr,
                tower_lr=self.tower_lr,
                l2=self.l2,
                temperature=self.temperature,
                rng=self.rng,
            )
        return self.trainer

    @property
    def batch_losses(self) -> list[float]:
        return [] if self.trainer is None else list(self.trainer.batch_losses)

    def train(self, interactions: Sequence[Interaction], epochs: int, *, batch_size: int | None = None) -> list[float]:
        """Per-epoch mean batch loss. Ratings are ignored: every pair is a positive."""
        self._require_initialized()
        self._check_training_data(interactions)
        u_idx, i_idx, _ = self._encode_interactions(interactions)
        trainer = self._get_trainer()
        size = int(batch_size or self.batch_size)

        logger.info(
            "Two-tower (%s) training: pairs=%d batch_size=%d epochs=%d",
            self.tower_type,
            len(u_idx),
            size,
            int(epochs),
        )

        losses: list[float] = []
        for epoch in range(int(epochs)):
            loss = trainer.train_epoch(u_idx, i_idx, batch_size=size, epoch=epoch)
            losses.append(loss)
            logger.info("Two-tower (%s) epoch=%d loss=%.6f", self.tower_type, epoch + 1, loss)

            if (
                self.convergence_threshold is not None
                and epoch + 1 >= self.convergence_min_epochs
                and is_converging(trainer.batch_losses, threshold=self.convergence_threshold)
            ):
                logger.info("Two-tower (%s) converged after %d epochs", self.tower_type, epoch + 1)
                break

        return losses

    def user_embedding(self, user_id: Hashable) -> np.ndarray:
        users, _ = self._require_initialized()
        vecs, _ = self.user_tower.forward(np.array([users.index(user_id)]))
        return vecs[0]

    def item_embeddings(self) -> np.ndarray:
        return self.item_tower.embeddings()

    def predict(self, user_id: Hashable, item_id: Hashable) -> float:
        _, items = self._require_initialized()
        u = self.user_embedding(user_id)
        vecs, _ = self.item_tower.forward(np.array([items.index(item_id)]))
        return clamp_rating(float(output_to_rating(float(vecs[0] @ u))))

    def score_items(self, user_id: Hashable, item_ids: Sequence[Hashable]) -> np.ndarray:
        _, items = self._require_initialized()
        u = self.user_embedding(user_id)
        idx = items.indices(item_ids)
        if idx.size == 0:
            return np.zeros(0, dtype=np.float64)
        vecs, _ = self.item_tower.forward(idx)
        return vecs @ u
