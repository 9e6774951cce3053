from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure `import towerrec...` works when pytest uses importlib import mode.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from towerrec.data import Interaction  # noqa: E402


@pytest.fixture()
def parity_interactions() -> list[Interaction]:
    """12 users x 12 items, each user rates 8 items: 5 when parities match, else 1."""
    out: list[Interaction] = []
    ts = 0
    for u in range(12):
        for j in range(8):
            i = (u + j) % 12
            ts += 1
            out.append(Interaction(user_id=u, item_id=i, rating=5.0 if (u % 2) == (i % 2) else 1.0, timestamp=ts))
    return out


@pytest.fixture()
def neighbour_pairs() -> list[Interaction]:
    """User u likes items u and u+1 (mod 8), repeated twice; ratings are irrelevant here."""
    out: list[Interaction] = []
    for _ in range(2):
        for u in range(8):
            out.append(Interaction(user_id=u, item_id=u, rating=5.0))
            out.append(Interaction(user_id=u, item_id=(u + 1) % 8, rating=4.0))
    return out


@pytest.fixture()
def item_genres() -> dict[int, np.ndarray]:
    out = {}
    for i in range(8):
        vec = np.zeros(8)
        vec[i] = 1.0
        out[i] = vec
    return out
