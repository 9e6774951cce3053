from __future__ import annotations

from typing import Hashable, Iterable

import numpy as np
from sklearn.preprocessing import LabelEncoder


class IdIndex:
    """Raw id <-> contiguous 0-based index mapping (sorted id order)."""

    def __init__(self, ids: Iterable[Hashable]) -> None:
        unique = list(dict.fromkeys(ids))
        if not unique:
            raise ValueError("IdIndex needs at least one id")

        self._encoder = LabelEncoder()
        self._encoder.fit(np.asarray(unique))
        self.classes: list = self._encoder.classes_.tolist()
        self._to_idx = {raw: i for i, raw in enumerate(self.classes)}

    def __len__(self) -> int:
        return len(self.classes)

    def __contains__(self, raw_id: object) -> bool:
        return raw_id in self._to_idx

    def get(self, raw_id: Hashable) -> int | None:
        return self._to_idx.get(raw_id)

    def index(self, raw_id: Hashable) -> int:
        idx = self._to_idx.get(raw_id)
        if idx is None:
            raise KeyError(f"Unknown id: {raw_id!r}")
        return idx

    def indices(self, raw_ids: Iterable[Hashable]) -> np.ndarray:
        return np.asarray([self.index(r) for r in raw_ids], dtype=np.int64)

    def raw(self, idx: int) -> Hashable:
        return self.classes[int(idx)]
