from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Hashable, Iterable, Sequence

import numpy as np

from ..data import Interaction
from ..errors import InsufficientDataError, UninitializedModelError
from ..indexing import IdIndex
from ..utils import make_rng


MIN_RATING = 1.0
MAX_RATING = 5.0


def clamp_rating(x: float) -> float:
    return float(min(MAX_RATING, max(MIN_RATING, x)))


class RatingModel(ABC):
    """Common id bookkeeping for every model.

    `initialize` fixes the user/item id sets and table sizes; nothing is added
    to them afterwards.
    """

    kind: str = "base"

    def __init__(self, *, min_interactions: int = 10, seed: int | None = None) -> None:
        self.min_interactions = int(min_interactions)
        self.rng = make_rng(seed)
        self.user_index: IdIndex | None = None
        self.item_index: IdIndex | None = None

    @property
    def initialized(self) -> bool:
        return self.user_index is not None and self.item_index is not None

    def initialize(self, user_ids: Iterable[Hashable], item_ids: Iterable[Hashable]) -> None:
        self.user_index = IdIndex(user_ids)
        self.item_index = IdIndex(item_ids)
        self._init_parameters()

    def _require_initialized(self) -> tuple[IdIndex, IdIndex]:
        if self.user_index is None or self.item_index is None:
            raise UninitializedModelError(f"{type(self).__name__}.initialize() has not been called")
        return self.user_index, self.item_index

    def indexes(self) -> tuple[IdIndex, IdIndex]:
        """(user_index, item_index); raises UninitializedModelError before `initialize`."""
        return self._require_initialized()

    def _check_training_data(self, interactions: Sequence[Interaction]) -> None:
        if len(interactions) < self.min_interactions:
            raise InsufficientDataError(
                f"need at least {self.min_interactions} interactions to train, got {len(interactions)}"
            )

    def _encode_interactions(
        self, interactions: Sequence[Interaction]
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        users, items = self._require_initialized()
        u_idx = users.indices(i.user_id for i in interactions)
        i_idx = items.indices(i.item_id for i in interactions)
        ratings = np.asarray([float(i.rating) for i in interactions], dtype=np.float64)
        return u_idx, i_idx, ratings

    @abstractmethod
    def _init_parameters(self) -> None: ...

    @abstractmethod
    def train(self, interactions: Sequence[Interaction], epochs: int) -> list[float]: ...

    @abstractmethod
    def predict(self, user_id: Hashable, item_id: Hashable) -> float: ...

    @abstractmethod
    def score_items(self, user_id: Hashable, item_ids: Sequence[Hashable]) -> np.ndarray:
        """Ranking scores for `item_ids` (higher is better), aligned with the input."""

    def item_embeddings(self) -> np.ndarray:
        raise NotImplementedError(f"{type(self).__name__} has no item embedding table")
