from __future__ import annotations

import numpy as np
import pytest

from towerrec.data import Interaction
from towerrec.encoders import FeatureConcatEncoder, HashedIdEncoder
from towerrec.errors import UninitializedModelError
from towerrec.features import (
    UserFeatureTable,
    feature_matrix,
    genre_vector,
    group_user_history,
    qualified_users,
    split_title_and_year,
    user_feature_vector,
)


def test_user_feature_vector_for_mixed_ratings() -> None:
    feats = user_feature_vector([5, 5, 5, 1, 1])

    assert feats.shape == (3,)
    assert feats[0] == pytest.approx(3.4 / 5.0)
    assert feats[0] == pytest.approx(0.68)
    assert feats[1] == pytest.approx(0.05)
    assert feats[2] == pytest.approx(np.std([5, 5, 5, 1, 1]) / 2.5)


def test_rating_count_feature_is_capped() -> None:
    assert user_feature_vector([4.0] * 250)[1] == 1.0


def test_genre_vector_pads_and_truncates() -> None:
    short = genre_vector([1, 0, 1], dim=19)
    long = genre_vector([1] * 25, dim=19)

    assert short.shape == (19,)
    assert short[:3].tolist() == [1.0, 0.0, 1.0]
    assert short[3:].sum() == 0.0
    assert long.shape == (19,)
    assert long.sum() == 19.0


def test_history_is_best_rated_then_most_recent() -> None:
    rows = [
        Interaction(1, 10, 3.0, 100),
        Interaction(1, 11, 5.0, 50),
        Interaction(1, 12, 5.0, 200),
        Interaction(2, 10, 4.0, 1),
    ]
    history = group_user_history(rows)

    assert [i.item_id for i in history[1]] == [12, 11, 10]
    assert [i.item_id for i in history[2]] == [10]


def test_qualified_users_threshold() -> None:
    rows = [Interaction(1, i, 4.0) for i in range(20)] + [Interaction(2, i, 4.0) for i in range(19)]
    assert qualified_users(group_user_history(rows)) == [1]
    assert sorted(qualified_users(group_user_history(rows), min_ratings=19)) == [1, 2]


def test_user_feature_table_recomputes_after_change() -> None:
    table = UserFeatureTable([Interaction(1, 1, 5.0), Interaction(1, 2, 5.0)])
    first = table.get(1)
    assert first is not None and first[0] == pytest.approx(1.0)

    table.add([Interaction(1, 3, 1.0), Interaction(1, 4, 1.0)])
    second = table.get(1)
    assert second[0] == pytest.approx(3.0 / 5.0)
    assert table.get(99) is None


def test_feature_matrix_fills_missing_rows_with_zeros() -> None:
    mat = feature_matrix([3, 1, 2], {1: np.array([1.0, 2.0]), 3: np.array([3.0])}, 2)
    np.testing.assert_allclose(mat, [[3.0, 0.0], [1.0, 2.0], [0.0, 0.0]])


def test_split_title_and_year() -> None:
    assert split_title_and_year("Toy Story (1995)") == ("Toy Story", 1995)
    assert split_title_and_year("Unknown title") == ("Unknown title", None)


def test_feature_concat_encoder_layout() -> None:
    enc = FeatureConcatEncoder({7: np.array([0.1, 0.2, 0.3])}, {9: genre_vector([0, 1])})
    x = enc.encode(7, 9)

    assert x.shape == (enc.dim,) == (22,)
    np.testing.assert_allclose(x[:3], [0.1, 0.2, 0.3])
    assert x[4] == 1.0
    with pytest.raises(KeyError):
        enc.encode(8, 9)


def test_feature_concat_encoder_requires_tables() -> None:
    with pytest.raises(UninitializedModelError):
        FeatureConcatEncoder().encode(1, 1)


def test_hashed_encoder_is_fixed_width_and_deterministic() -> None:
    enc = HashedIdEncoder(width=32)
    a = enc.encode(1, 2)
    b = HashedIdEncoder(width=32).encode(1, 2)

    assert a.shape == (32,)
    assert 1.0 <= a.sum() <= 2.0
    assert set(np.unique(a).tolist()) <= {0.0, 1.0}
    np.testing.assert_array_equal(a, b)
