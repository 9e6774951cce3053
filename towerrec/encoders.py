"""Input encoders for the pointwise rating network: (user_id, item_id) -> vector."""

from __future__ import annotations

from typing import Hashable, Mapping, Protocol

import numpy as np
from sklearn.feature_extraction import FeatureHasher

from .errors import UninitializedModelError
from .features import ITEM_FEATURE_DIM, USER_FEATURE_DIM


class PairEncoder(Protocol):
    dim: int

    def encode(self, user_id: Hashable, item_id: Hashable) -> np.ndarray: ...


class FeatureConcatEncoder:
    """User statistics vector followed by the item genre vector."""

    def __init__(
        self,
        user_features: Mapping[Hashable, np.ndarray] | None = None,
        item_features: Mapping[Hashable, np.ndarray] | None = None,
        *,
        user_dim: int = USER_FEATURE_DIM,
        item_dim: int = ITEM_FEATURE_DIM,
    ) -> None:
        self.user_dim = int(user_dim)
        self.item_dim = int(item_dim)
        self.dim = self.user_dim + self.item_dim
        self.user_features = user_features
        self.item_features = item_features

    def encode(self, user_id: Hashable, item_id: Hashable) -> np.ndarray:
        if self.user_features is None or self.item_features is None:
            raise UninitializedModelError("user/item feature tables are not set")
        if user_id not in self.user_features:
            raise KeyError(f"No features for user_id={user_id!r}")
        if item_id not in self.item_features:
            raise KeyError(f"No features for item_id={item_id!r}")

        out = np.zeros(self.dim, dtype=np.float64)
        u = np.asarray(self.user_features[user_id], dtype=np.float64)[: self.user_dim]
        i = np.asarray(self.item_features[item_id], dtype=np.float64)[: self.item_dim]
        out[: u.size] = u
        out[self.user_dim : self.user_dim + i.size] = i
        return out


class HashedIdEncoder:
    """Hash `user=<id>` / `item=<id>` tokens into a fixed-width multi-hot vector.

    Collisions are expected; prefer `FeatureConcatEncoder` when features exist.
    """

    def __init__(self, width: int = 64) -> None:
        if int(width) < 2:
            raise ValueError("width must be >= 2")
        self.dim = int(width)
        self._hasher = FeatureHasher(n_features=self.dim, input_type="string", alternate_sign=False)

    def encode(self, user_id: Hashable, item_id: Hashable) -> np.ndarray:
        tokens = [[f"user={user_id}", f"item={item_id}"]]
        row = self._hasher.transform(tokens).toarray()[0]
        return np.minimum(row, 1.0).astype(np.float64)
