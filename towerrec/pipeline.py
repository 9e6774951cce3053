"""Load MovieLens 100K, build features and train one recommender per model kind."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .config import RecommenderConfig
from .data import Interaction, RawMovieLensData, interactions_from_frame, load_movielens_100k
from .features import item_features_from_catalog, split_title_and_year
from .recommender import MODEL_KINDS, EmbeddingRecommender, build_model


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingData:
    interactions: list[Interaction]
    items: pd.DataFrame
    item_features: dict
    titles: dict[int, str]
    years: dict[int, int | None]


def expand_kinds(model: str) -> list[str]:
    if model == "both":
        return ["simple", "mlp_tower"]
    if model == "all":
        return list(MODEL_KINDS)
    if model not in MODEL_KINDS:
        raise ValueError(f"Unknown model {model!r}; expected one of {MODEL_KINDS + ('both', 'all')}")
    return [model]


def prepare_training_data(data: RawMovieLensData, *, item_feature_dim: int = 19) -> TrainingData:
    interactions = interactions_from_frame(data.ratings)
    titles: dict[int, str] = {}
    years: dict[int, int | None] = {}
    for item_id, title in zip(data.items["itemId"].tolist(), data.items["title"].tolist()):
        clean, year = split_title_and_year("" if pd.isna(title) else str(title))
        titles[int(item_id)] = clean
        years[int(item_id)] = year
    return TrainingData(
        interactions=interactions,
        items=data.items,
        item_features=item_features_from_catalog(data.items, dim=item_feature_dim),
        titles=titles,
        years=years,
    )


def load_training_data(raw_dir: Path, cfg: RecommenderConfig) -> TrainingData:
    data = load_movielens_100k(raw_dir, max_interactions=cfg.data.max_interactions)
    prepared = prepare_training_data(data, item_feature_dim=cfg.data.item_feature_dim)
    logger.info(
        "Loaded %d interactions and %d items from %s",
        len(prepared.interactions),
        len(prepared.items),
        raw_dir,
    )
    return prepared


def default_epochs(kind: str, cfg: RecommenderConfig) -> int:
    if kind == "factorization":
        return cfg.factorization.epochs
    if kind == "mlp":
        return cfg.mlp.epochs
    return cfg.towers.epochs


def train_recommender(
    kind: str,
    cfg: RecommenderConfig,
    data: TrainingData,
    *,
    epochs: int | None = None,
) -> EmbeddingRecommender:
    """Initialize on the ids present in the interactions, then train."""
    model = build_model(kind, cfg, item_features=data.item_features)
    rec = EmbeddingRecommender(
        model,
        item_features=data.item_features,
        qualified_min_ratings=cfg.data.qualified_min_ratings,
        item_feature_dim=cfg.data.item_feature_dim,
    )
    rec.initialize(
        (i.user_id for i in data.interactions),
        (i.item_id for i in data.interactions),
    )
    rec.train(data.interactions, int(epochs if epochs is not None else default_epochs(kind, cfg)))
    return rec
