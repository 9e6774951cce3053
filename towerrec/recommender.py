"""Caller-facing facade: initialize / train / predict / recommend / project."""

from __future__ import annotations

import logging
from typing import Hashable, Iterable, Mapping, Sequence

import numpy as np

from .config import RecommenderConfig
from .data import Interaction
from .encoders import FeatureConcatEncoder, HashedIdEncoder
from .features import ITEM_FEATURE_DIM, UserFeatureTable, group_user_history, qualified_users
from .models import FactorizationModel, MLPRatingModel, RatingModel, TwoTowerModel
from .pca import evenly_spaced_sample, project_embeddings
from .ranker import RankedItem, rank_items


logger = logging.getLogger(__name__)

MODEL_KINDS: tuple[str, ...] = ("factorization", "mlp", "simple", "mlp_tower")


def build_model(
    kind: str,
    cfg: RecommenderConfig,
    *,
    user_features: Mapping[Hashable, np.ndarray] | None = None,
    item_features: Mapping[Hashable, np.ndarray] | None = None,
) -> RatingModel:
    """Construct an untrained model of `kind` from config."""
    seed = cfg.seed
    min_interactions = cfg.data.min_interactions

    if kind == "factorization":
        f = cfg.factorization
        return FactorizationModel(
            embed_dim=f.embed_dim,
            lr=f.lr,
            l2=f.l2,
            init_std=f.init_std,
            min_epochs=f.min_epochs,
            tolerance=f.tolerance,
            min_interactions=min_interactions,
            seed=seed,
        )

    if kind == "mlp":
        m = cfg.mlp
        if m.encoder == "features":
            encoder = FeatureConcatEncoder(user_features, item_features, item_dim=cfg.data.item_feature_dim)
        elif m.encoder == "hashed":
            encoder = HashedIdEncoder(m.hashed_width)
        else:
            raise ValueError(f"Unknown mlp encoder: {m.encoder!r}")
        return MLPRatingModel(
            encoder,
            hidden_sizes=m.hidden_sizes,
            lr=m.lr,
            l2=m.l2,
            dropout=m.dropout,
            lr_decay=m.lr_decay,
            target_epsilon=m.target_epsilon,
            min_epochs=m.min_epochs,
            tolerance=m.tolerance,
            min_interactions=min_interactions,
            seed=seed,
        )

    if kind in ("simple", "mlp_tower"):
        t = cfg.towers
        return TwoTowerModel(
            "simple" if kind == "simple" else "mlp",
            embed_dim=t.embed_dim,
            hidden_units=t.hidden_units,
            init_std=t.init_std,
            dropout=t.dropout,
            embedding_lr=t.embedding_lr,
            tower_lr=t.tower_lr,
            l2=t.l2,
            temperature=t.temperature,
            batch_size=t.batch_size,
            convergence_threshold=t.convergence_threshold,
            convergence_min_epochs=t.convergence_min_epochs,
            min_interactions=min_interactions,
            seed=seed,
        )

    raise ValueError(f"Unknown model kind: {kind!r} (expected one of {MODEL_KINDS})")


class EmbeddingRecommender:
    """Owns one model plus the interaction history needed to filter and explain results.

    Call order: `initialize(user_ids, item_ids)` -> `train(interactions, epochs)`
    -> `predict` / `recommend` / `item_projection`.
    """

    def __init__(
        self,
        model: RatingModel,
        *,
        item_features: Mapping[Hashable, np.ndarray] | None = None,
        qualified_min_ratings: int = 20,
        item_feature_dim: int = ITEM_FEATURE_DIM,
    ) -> None:
        self.model = model
        self.item_features = dict(item_features) if item_features is not None else None
        self.qualified_min_ratings = int(qualified_min_ratings)
        self.item_feature_dim = int(item_feature_dim)
        self.user_features = UserFeatureTable()
        self._history: dict[Hashable, list[Interaction]] = {}
        self.loss_history: list[float] = []

    @property
    def kind(self) -> str:
        return self.model.kind

    def initialize(self, user_ids: Iterable[Hashable], item_ids: Iterable[Hashable]) -> None:
        self.model.initialize(user_ids, item_ids)
        self.loss_history = []

    def _attach_features(self) -> None:
        """Hand the current feature tables to models that consume them."""
        model = self.model
        if isinstance(model, TwoTowerModel) and model.tower_type == "mlp":
            model.set_user_features(self.user_features.features())
            if self.item_features is not None:
                model.set_item_features(self.item_features, dim=self.item_feature_dim)
        elif isinstance(model, MLPRatingModel) and isinstance(model.encoder, FeatureConcatEncoder):
            model.encoder.user_features = self.user_features.features()
            if self.item_features is not None:
                model.encoder.item_features = _fill_missing(
                    self.item_features, model.item_index.classes if model.item_index else [], self.item_feature_dim
                )

    def train(self, interactions: Sequence[Interaction], epochs: int) -> list[float]:
        interactions = list(interactions)
        self.user_features.set_interactions(interactions)
        self._history = group_user_history(interactions)
        self._attach_features()

        logger.info("Training %s model on %d interactions (%d users)", self.kind, len(interactions), len(self._history))
        losses = self.model.train(interactions, epochs)
        self.loss_history.extend(losses)
        return losses

    def predict(self, user_id: Hashable, item_id: Hashable) -> float:
        return self.model.predict(user_id, item_id)

    def rated_items(self, user_id: Hashable) -> set[Hashable]:
        return {i.item_id for i in self._history.get(user_id, [])}

    def history(self, user_id: Hashable, n: int = 10) -> list[Interaction]:
        """The user's best-rated (then most recent) interactions."""
        return list(self._history.get(user_id, [])[: int(n)])

    @property
    def qualified_users(self) -> list[Hashable]:
        return qualified_users(self._history, min_ratings=self.qualified_min_ratings)

    def recommend(
        self,
        user_id: Hashable,
        candidate_item_ids: Sequence[Hashable] | None = None,
        top_k: int = 10,
    ) -> list[RankedItem]:
        """Top-k unrated items for a known user, best first."""
        _, items = self.model.indexes()
        candidates = list(candidate_item_ids) if candidate_item_ids is not None else list(items.classes)
        candidates = [c for c in candidates if c in items]
        return rank_items(
            lambda ids: self.model.score_items(user_id, ids),
            candidates,
            self.rated_items(user_id),
            k=top_k,
        )

    def project_embeddings(self, vectors: np.ndarray, k: int = 2) -> np.ndarray:
        return project_embeddings(vectors, k)

    def item_projection(self, *, sample_size: int = 500, k: int = 2) -> tuple[list[Hashable], np.ndarray]:
        """2-D view of an evenly spaced sample of item embeddings: (item_ids, coordinates)."""
        _, items = self.model.indexes()
        emb = self.model.item_embeddings()
        idx = evenly_spaced_sample(emb.shape[0], sample_size)
        coords = project_embeddings(emb[idx], k)
        return [items.raw(i) for i in idx], coords


def _fill_missing(
    features: Mapping[Hashable, np.ndarray],
    item_ids: Sequence[Hashable],
    dim: int,
) -> dict[Hashable, np.ndarray]:
    out = dict(features)
    for item_id in item_ids:
        if item_id not in out:
            out[item_id] = np.zeros(dim, dtype=np.float64)
    return out
