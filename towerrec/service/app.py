"""FastAPI service entrypoint: trains one recommender at startup, then serves it read-only."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException

from ..config import RecommenderConfig, load_config
from ..errors import UninitializedModelError
from ..paths import ProjectPaths, get_repo_root, resolve_under
from ..pipeline import expand_kinds, load_training_data, train_recommender
from ..recommender import EmbeddingRecommender
from ..utils import setup_logging
from .schemas import HealthResponse, PredictRequest, PredictResponse, RecommendRequest, RecommendResponse

logger = logging.getLogger(__name__)


def _get_env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or str(raw).strip() == "":
        return default
    return resolve_under(get_repo_root(), str(raw))


def _train_from_env() -> tuple[EmbeddingRecommender, dict[int, str]]:
    repo_root = get_repo_root()
    config_path = _get_env_path("CONFIG_PATH", ProjectPaths.from_repo_root(repo_root).config_path)
    cfg = load_config(config_path) if config_path.exists() else RecommenderConfig()
    kind = os.getenv("MODEL_KIND") or expand_kinds(cfg.model)[0]

    paths = ProjectPaths.from_repo_root(repo_root, raw_dir=cfg.data.raw_dir, config_path=config_path)
    raw_dir = _get_env_path("DATA_DIR", paths.raw_dir)
    logger.info("Training %s model at startup from %s (config=%s)", kind, raw_dir, config_path)
    data = load_training_data(raw_dir, cfg)
    return train_recommender(kind, cfg, data), data.titles


def create_app(
    recommender: EmbeddingRecommender | None = None,
    *,
    titles: dict[int, str] | None = None,
) -> FastAPI:
    """Build the app; without a `recommender` one is trained from config at startup."""

    @asynccontextmanager
    async def lifespan(app_: FastAPI):
        setup_logging(os.getenv("LOG_LEVEL", "INFO"))
        if recommender is None:
            app_.state.recommender, app_.state.titles = _train_from_env()
        else:
            app_.state.recommender = recommender
            app_.state.titles = dict(titles or {})
        yield

    app_ = FastAPI(title="Embedding Recommender Service", lifespan=lifespan)

    def _recommender() -> EmbeddingRecommender:
        rec = getattr(app_.state, "recommender", None)
        if rec is None:
            raise HTTPException(status_code=503, detail="Recommender not initialized")
        return rec

    @app_.get("/health", response_model=HealthResponse)
    def health() -> dict:
        rec = getattr(app_.state, "recommender", None)
        return {"status": "ok" if rec is not None else "starting", "model": None if rec is None else rec.kind}

    @app_.post("/predict", response_model=PredictResponse)
    def predict(req: PredictRequest) -> dict:
        """Predicted rating in [1, 5] for one (user, item) pair."""
        rec = _recommender()
        try:
            rating = rec.predict(int(req.userId), int(req.itemId))
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except UninitializedModelError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"userId": int(req.userId), "itemId": int(req.itemId), "model": rec.kind, "rating": float(rating)}

    @app_.post("/recommend", response_model=RecommendResponse)
    def recommend(req: RecommendRequest) -> dict:
        """Top-k items the user has not rated yet."""
        rec = _recommender()
        try:
            recs = rec.recommend(int(req.userId), req.candidateItemIds, top_k=int(req.k))
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except UninitializedModelError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        titles_map = getattr(app_.state, "titles", {}) or {}
        return {
            "userId": int(req.userId),
            "model": rec.kind,
            "k": int(req.k),
            "results": [
                {"itemId": int(r.item_id), "score": float(r.score), "title": titles_map.get(int(r.item_id))}
                for r in recs
            ],
        }

    return app_


app = create_app()
