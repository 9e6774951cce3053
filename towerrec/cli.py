from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path

import numpy as np
import pandas as pd

from .config import RecommenderConfig, load_config
from .errors import UninitializedModelError
from .paths import ProjectPaths, get_repo_root, resolve_under
from .pca import evenly_spaced_sample, fit_projection
from .pipeline import TrainingData, expand_kinds, load_training_data, train_recommender
from .recommender import EmbeddingRecommender
from .utils import ReproducibilityConfig, set_global_seed, setup_logging


logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Train embedding recommenders on MovieLens 100K and show recommendations")
    p.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to config YAML.")
    p.add_argument("--data-dir", type=Path, default=None, help="Directory holding u.data and u.item")
    p.add_argument(
        "--model",
        type=str,
        default=None,
        help="factorization | mlp | simple | mlp_tower | both | all (default from config)",
    )
    p.add_argument("--epochs", type=int, default=None, help="Override epochs for every model")
    p.add_argument("--max-interactions", type=int, default=None, help="Only read the first N ratings")
    p.add_argument("--user-id", type=int, default=None, help="Raw userId; default: random qualified user")
    p.add_argument("--k", type=int, default=None, help="How many recommendations to return")
    p.add_argument("--seed", type=int, default=None, help="Override seed")
    p.add_argument("--log-level", type=str, default=None, help="DEBUG/INFO/WARNING")
    return p


def _load_cfg(args: argparse.Namespace, repo_root: Path) -> RecommenderConfig:
    config_path = resolve_under(repo_root, args.config)
    cfg = load_config(config_path) if config_path.exists() else RecommenderConfig()

    if args.seed is not None:
        cfg = replace(cfg, seed=int(args.seed))
    if args.model is not None:
        cfg = replace(cfg, model=str(args.model))
    if args.k is not None:
        cfg = replace(cfg, top_k=int(args.k))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.max_interactions is not None:
        cfg = replace(cfg, data=replace(cfg.data, max_interactions=int(args.max_interactions)))
    return cfg


def _history_frame(rec: EmbeddingRecommender, user_id: int, data: TrainingData) -> pd.DataFrame:
    rows = [
        {
            "itemId": h.item_id,
            "title": data.titles.get(h.item_id),
            "rating": h.rating,
            "year": data.years.get(h.item_id),
        }
        for h in rec.history(user_id, 10)
    ]
    return pd.DataFrame(rows)


def _recs_frame(rec: EmbeddingRecommender, user_id: int, k: int, data: TrainingData) -> pd.DataFrame:
    rows = [
        {
            "itemId": r.item_id,
            "title": data.titles.get(r.item_id),
            "score": round(r.score, 4),
            "year": data.years.get(r.item_id),
        }
        for r in rec.recommend(user_id, top_k=k)
    ]
    return pd.DataFrame(rows)


def _print_projection(rec: EmbeddingRecommender, sample_size: int) -> None:
    try:
        emb = rec.model.item_embeddings()
    except (NotImplementedError, UninitializedModelError):
        print(f"({rec.kind} model has no item embeddings to project)")
        return
    idx = evenly_spaced_sample(emb.shape[0], sample_size)
    proj = fit_projection(emb[idx], 2)
    total = float(emb[idx].var(axis=0).sum())
    share = proj.eigenvalues / total if total > 0 else np.zeros_like(proj.eigenvalues)
    print(
        f"PCA of {len(idx)} item embeddings: eigenvalues={np.round(proj.eigenvalues, 5).tolist()} "
        f"variance_share={np.round(share, 3).tolist()}"
    )


def main(argv: list[str] | None = None) -> None:
    args = build_arg_parser().parse_args(argv)
    repo_root = get_repo_root()
    cfg = _load_cfg(args, repo_root)
    setup_logging(cfg.log_level)
    set_global_seed(ReproducibilityConfig(seed=cfg.seed))

    raw_dir = args.data_dir if args.data_dir is not None else Path(cfg.data.raw_dir)
    paths = ProjectPaths.from_repo_root(repo_root, raw_dir=raw_dir)
    data = load_training_data(paths.raw_dir, cfg)

    recommenders = {kind: train_recommender(kind, cfg, data, epochs=args.epochs) for kind in expand_kinds(cfg.model)}
    first = next(iter(recommenders.values()))

    if args.user_id is not None:
        user_id = int(args.user_id)
    else:
        qualified = first.qualified_users
        if not qualified:
            raise SystemExit(f"No users with at least {cfg.data.qualified_min_ratings} ratings")
        user_id = int(np.random.default_rng(cfg.seed).choice(qualified))

    print(f"\n=== Top rated by user {user_id} ===")
    print(_history_frame(first, user_id, data).to_string(index=False))

    for kind, rec in recommenders.items():
        print(f"\n=== {kind} (final loss {rec.loss_history[-1]:.4f}) ===")
        df_r = _recs_frame(rec, user_id, cfg.top_k, data)
        print(df_r.to_string(index=False) if not df_r.empty else "No recommendations found.")
        _print_projection(rec, cfg.projection_sample_size)


if __name__ == "__main__":
    main()
