from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import pandas as pd


N_GENRE_COLUMNS = 19

RATING_COLUMNS: tuple[str, ...] = ("userId", "itemId", "rating", "timestamp")
ITEM_BASE_COLUMNS: tuple[str, ...] = ("itemId", "title", "release_date", "video_release_date", "imdb_url")


@dataclass(frozen=True)
class Interaction:
    user_id: int
    item_id: int
    rating: float
    timestamp: int = 0


@dataclass(frozen=True)
class RawMovieLensData:
    ratings: pd.DataFrame
    items: pd.DataFrame


def load_movielens_100k(raw_dir: Path, *, max_interactions: int | None = None) -> RawMovieLensData:
    """Load the MovieLens 100K `u.data` and `u.item` files from a directory.

    Notes
    -----
    `u.data` is tab separated without a header; only the first
    `max_interactions` rows are kept (file order). `u.item` is pipe separated,
    latin-1 encoded, with 19 trailing genre flags. Rows with fewer flags are
    kept; the genre vector is padded later by the feature builder.
    """
    raw_dir = Path(raw_dir)
    ratings = pd.read_csv(
        raw_dir / "u.data",
        sep="\t",
        header=None,
        names=list(RATING_COLUMNS),
        dtype={"userId": "int64", "itemId": "int64", "rating": "float64", "timestamp": "int64"},
        nrows=max_interactions,
    )

    genre_cols = [f"genre_{i}" for i in range(N_GENRE_COLUMNS)]
    items = pd.read_csv(
        raw_dir / "u.item",
        sep="|",
        header=None,
        names=list(ITEM_BASE_COLUMNS) + genre_cols,
        encoding="latin-1",
        dtype={"itemId": "int64", "title": "string"},
    )
    items[genre_cols] = items[genre_cols].fillna(0).astype("int64")

    data = RawMovieLensData(ratings=ratings, items=items)
    validate_schema(data)
    return data


def validate_schema(data: RawMovieLensData) -> None:
    """Validate that required columns exist and basic constraints hold."""
    missing = [c for c in RATING_COLUMNS if c not in data.ratings.columns]
    if missing:
        raise ValueError(f"u.data missing columns: {missing}")
    if "itemId" not in data.items.columns or "title" not in data.items.columns:
        raise ValueError("u.item missing columns: ['itemId', 'title']")

    if data.items["itemId"].duplicated().any():
        raise ValueError("u.item has duplicate itemId values")

    ratings = data.ratings
    bad_mask = ~ratings["rating"].between(1.0, 5.0)
    if bad_mask.any():
        bad_values = sorted(set(ratings.loc[bad_mask, "rating"].tolist()))
        raise ValueError(f"u.data has ratings outside 1..5: {bad_values}")

    if (ratings["timestamp"] < 0).any():
        raise ValueError("u.data contains negative timestamps")


def interactions_from_frame(ratings: pd.DataFrame) -> list[Interaction]:
    """Convert a ratings frame (userId, itemId, rating[, timestamp]) to records, keeping row order."""
    has_ts = "timestamp" in ratings.columns
    out: list[Interaction] = []
    for row in ratings.itertuples(index=False):
        out.append(
            Interaction(
                user_id=int(row.userId),
                item_id=int(row.itemId),
                rating=float(row.rating),
                timestamp=int(row.timestamp) if has_ts else 0,
            )
        )
    return out


def interactions_to_frame(interactions: Iterable[Interaction]) -> pd.DataFrame:
    rows = [(i.user_id, i.item_id, i.rating, i.timestamp) for i in interactions]
    return pd.DataFrame(rows, columns=list(RATING_COLUMNS))
