from __future__ import annotations

import re
from collections import defaultdict
from typing import Hashable, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from .data import Interaction


GENRES: tuple[str, ...] = (
    "Unknown",
    "Action",
    "Adventure",
    "Animation",
    "Children's",
    "Comedy",
    "Crime",
    "Documentary",
    "Drama",
    "Fantasy",
    "Film-Noir",
    "Horror",
    "Musical",
    "Mystery",
    "Romance",
    "Sci-Fi",
    "Thriller",
    "War",
    "Western",
)

USER_FEATURE_DIM = 3
ITEM_FEATURE_DIM = len(GENRES)
QUALIFIED_MIN_RATINGS = 20

_TITLE_YEAR_RE = re.compile(r"\((\d{4})\)\s*$")


def split_title_and_year(title: str) -> tuple[str, Optional[int]]:
    """Split a MovieLens `title` into (title_clean, year) when it ends with '(YYYY)'."""
    title = "" if title is None else str(title)
    title = title.strip()

    match = _TITLE_YEAR_RE.search(title)
    if not match:
        return title, None

    year = int(match.group(1))
    title_clean = title[: match.start()].rstrip()
    return title_clean, year


def user_feature_vector(ratings: Sequence[float]) -> np.ndarray:
    """[mean/5, min(count/100, 1), std/2.5] with the population std."""
    r = np.asarray(ratings, dtype=np.float64)
    if r.size == 0:
        return np.zeros(USER_FEATURE_DIM, dtype=np.float64)
    return np.array(
        [
            r.mean() / 5.0,
            min(r.size / 100.0, 1.0),
            r.std() / 2.5,
        ],
        dtype=np.float64,
    )


def _fit_length(values: Iterable[float], dim: int) -> np.ndarray:
    vals = [float(v) for v in values][:dim]
    out = np.zeros(dim, dtype=np.float64)
    out[: len(vals)] = vals
    return out


def genre_vector(flags: Iterable[float], dim: int = ITEM_FEATURE_DIM) -> np.ndarray:
    """Multi-hot genre vector padded with zeros or truncated to `dim`."""
    return _fit_length(flags, dim)


def group_user_history(interactions: Iterable[Interaction]) -> dict[Hashable, list[Interaction]]:
    """Group interactions per user, best rated first, then most recent first."""
    grouped: dict[Hashable, list[Interaction]] = defaultdict(list)
    for inter in interactions:
        grouped[inter.user_id].append(inter)
    for rows in grouped.values():
        rows.sort(key=lambda i: (-i.rating, -i.timestamp))
    return dict(grouped)


def qualified_users(
    history: dict[Hashable, list[Interaction]],
    *,
    min_ratings: int = QUALIFIED_MIN_RATINGS,
) -> list[Hashable]:
    return [uid for uid, rows in history.items() if len(rows) >= int(min_ratings)]


def item_features_from_catalog(items: pd.DataFrame, *, dim: int = ITEM_FEATURE_DIM) -> dict[int, np.ndarray]:
    """Genre vectors keyed by itemId from a `u.item` frame (genre_* columns in order)."""
    genre_cols = [c for c in items.columns if str(c).startswith("genre_")]
    out: dict[int, np.ndarray] = {}
    for item_id, flags in zip(items["itemId"].astype("int64").tolist(), items[genre_cols].to_numpy()):
        out[int(item_id)] = genre_vector(flags, dim)
    return out


def feature_matrix(
    ordered_ids: Sequence[Hashable],
    features: dict[Hashable, np.ndarray],
    dim: int,
) -> np.ndarray:
    """Stack per-id vectors in index order; ids without a vector get zeros."""
    mat = np.zeros((len(ordered_ids), dim), dtype=np.float64)
    for row, raw_id in enumerate(ordered_ids):
        vec = features.get(raw_id)
        if vec is not None:
            mat[row] = _fit_length(vec, dim)
    return mat


class UserFeatureTable:
    """Per-user rating statistics, computed lazily and dropped when interactions change."""

    def __init__(self, interactions: Iterable[Interaction] = ()) -> None:
        self._interactions: list[Interaction] = list(interactions)
        self._features: dict[Hashable, np.ndarray] | None = None

    @property
    def interactions(self) -> list[Interaction]:
        return list(self._interactions)

    def set_interactions(self, interactions: Iterable[Interaction]) -> None:
        self._interactions = list(interactions)
        self.invalidate()

    def add(self, interactions: Iterable[Interaction]) -> None:
        self._interactions.extend(interactions)
        self.invalidate()

    def invalidate(self) -> None:
        self._features = None

    def features(self) -> dict[Hashable, np.ndarray]:
        if self._features is None:
            ratings: dict[Hashable, list[float]] = defaultdict(list)
            for inter in self._interactions:
                ratings[inter.user_id].append(float(inter.rating))
            self._features = {uid: user_feature_vector(rs) for uid, rs in ratings.items()}
        return self._features

    def get(self, user_id: Hashable) -> np.ndarray | None:
        return self.features().get(user_id)
