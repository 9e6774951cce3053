from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Collection, Hashable, Sequence

import numpy as np


@dataclass(frozen=True)
class RankedItem:
    item_id: Hashable
    score: float


def top_k(
    item_ids: Sequence[Hashable],
    scores: np.ndarray,
    *,
    exclude: Collection[Hashable] = (),
    k: int = 10,
) -> list[RankedItem]:
    """Highest-scoring items not in `exclude`.

    Stable: equal scores keep the order of `item_ids`. NaN scores are dropped.
    """
    scores = np.asarray(scores, dtype=np.float64)
    if scores.shape != (len(item_ids),):
        raise ValueError(f"scores shape {scores.shape} does not match {len(item_ids)} items")
    if int(k) <= 0:
        return []

    excluded = set(exclude)
    keep = [j for j, item_id in enumerate(item_ids) if item_id not in excluded and not np.isnan(scores[j])]
    if not keep:
        return []

    kept = np.asarray(keep, dtype=np.int64)
    order = np.argsort(-scores[kept], kind="stable")[: int(k)]
    return [RankedItem(item_id=item_ids[int(kept[o])], score=float(scores[kept[o]])) for o in order]


def rank_items(
    score_fn: Callable[[Sequence[Hashable]], np.ndarray],
    candidate_item_ids: Sequence[Hashable],
    rated_item_ids: Collection[Hashable],
    *,
    k: int = 10,
) -> list[RankedItem]:
    """Score only unrated candidates, then take the stable top-k."""
    rated = set(rated_item_ids)
    candidates = [i for i in candidate_item_ids if i not in rated]
    if not candidates:
        return []
    return top_k(candidates, score_fn(candidates), k=k)
