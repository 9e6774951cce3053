from __future__ import annotations

import numpy as np
import pytest

from towerrec.data import Interaction
from towerrec.errors import UninitializedModelError
from towerrec.models import FactorizationModel, TwoTowerModel
from towerrec.ranker import rank_items, top_k
from towerrec.recommender import EmbeddingRecommender


def test_top_k_orders_descending_and_excludes() -> None:
    ranked = top_k(["a", "b", "c", "d"], np.array([0.1, 0.9, 0.5, 0.7]), exclude={"b"}, k=2)

    assert [r.item_id for r in ranked] == ["d", "c"]
    assert ranked[0].score == pytest.approx(0.7)


def test_top_k_ties_keep_input_order() -> None:
    ranked = top_k([3, 1, 2], np.array([1.0, 1.0, 1.0]), k=3)

    assert [r.item_id for r in ranked] == [3, 1, 2]


def test_top_k_drops_nan_and_handles_small_inputs() -> None:
    ranked = top_k(["a", "b"], np.array([np.nan, 0.2]), k=5)

    assert [r.item_id for r in ranked] == ["b"]
    assert top_k(["a"], np.array([1.0]), k=0) == []
    with pytest.raises(ValueError):
        top_k(["a", "b"], np.array([1.0]))


def test_rank_items_only_scores_unrated() -> None:
    seen: list[list[str]] = []

    def score(ids):
        seen.append(list(ids))
        return np.arange(len(ids), dtype=np.float64)

    ranked = rank_items(score, ["a", "b", "c"], {"a"}, k=10)

    assert seen == [["b", "c"]]
    assert [r.item_id for r in ranked] == ["c", "b"]
    assert rank_items(score, ["a"], {"a"}) == []


def _trained_recommender(interactions: list[Interaction]) -> EmbeddingRecommender:
    rec = EmbeddingRecommender(FactorizationModel(embed_dim=4, seed=0), qualified_min_ratings=8)
    rec.initialize({i.user_id for i in interactions}, {i.item_id for i in interactions})
    rec.train(interactions, epochs=5)
    return rec


def test_recommend_excludes_rated_items(parity_interactions: list[Interaction]) -> None:
    rec = _trained_recommender(parity_interactions)

    ranked = rec.recommend(0, top_k=10)

    rated = rec.rated_items(0)
    assert len(rated) == 8
    assert len(ranked) == 4
    assert not {r.item_id for r in ranked} & rated
    scores = [r.score for r in ranked]
    assert scores == sorted(scores, reverse=True)


def test_recommend_respects_candidates_and_k(parity_interactions: list[Interaction]) -> None:
    rec = _trained_recommender(parity_interactions)

    ranked = rec.recommend(0, candidate_item_ids=[8, 9, 10, 11, 0, 999], top_k=2)

    assert len(ranked) == 2
    assert {r.item_id for r in ranked} <= {8, 9, 10, 11}


def test_recommend_unknown_user_raises(parity_interactions: list[Interaction]) -> None:
    rec = _trained_recommender(parity_interactions)

    with pytest.raises(KeyError):
        rec.recommend(12345)


def test_history_and_qualified_users(parity_interactions: list[Interaction]) -> None:
    rec = _trained_recommender(parity_interactions)

    hist = rec.history(0, n=3)
    assert [h.rating for h in hist] == [5.0, 5.0, 5.0]
    assert hist[0].timestamp > hist[1].timestamp
    assert rec.qualified_users == list(range(12))
    assert rec.loss_history and len(rec.loss_history) <= 5


def test_item_projection_shape(parity_interactions: list[Interaction]) -> None:
    rec = _trained_recommender(parity_interactions)

    ids, coords = rec.item_projection(sample_size=6)

    assert ids == [0, 2, 4, 6, 8, 10]
    assert coords.shape == (6, 2)


def test_recommend_before_initialize() -> None:
    rec = EmbeddingRecommender(TwoTowerModel("simple"))

    with pytest.raises(UninitializedModelError):
        rec.recommend("u1")
