from __future__ import annotations

import numpy as np
import pytest

from towerrec.contrastive import ContrastiveTrainer, in_batch_softmax_loss
from towerrec.data import Interaction
from towerrec.errors import NumericInstabilityError, UninitializedModelError
from towerrec.models import EmbeddingTower, MLPTower, TwoTowerModel
from towerrec.recommender import EmbeddingRecommender


def test_loss_matches_cross_entropy_and_gradients() -> None:
    rng = np.random.default_rng(0)
    u = rng.normal(size=(4, 3))
    v = rng.normal(size=(4, 3))

    loss, gu, gv = in_batch_softmax_loss(u, v, temperature=0.5)

    logits = u @ v.T / 0.5
    expected = -np.mean([logits[i, i] - np.log(np.exp(logits[i]).sum()) for i in range(4)])
    assert loss == pytest.approx(expected)

    eps = 1e-6
    for arr, grad in ((u, gu), (v, gv)):
        num = np.zeros_like(arr)
        for idx in np.ndindex(*arr.shape):
            orig = arr[idx]
            arr[idx] = orig + eps
            up = in_batch_softmax_loss(u, v, temperature=0.5)[0]
            arr[idx] = orig - eps
            down = in_batch_softmax_loss(u, v, temperature=0.5)[0]
            arr[idx] = orig
            num[idx] = (up - down) / (2 * eps)
        np.testing.assert_allclose(grad, num, rtol=1e-4, atol=1e-7)


def _table_trainer(seed: int = 0) -> ContrastiveTrainer:
    rng = np.random.default_rng(seed)
    return ContrastiveTrainer(
        EmbeddingTower(4, 3, rng=rng, name="user"),
        EmbeddingTower(4, 3, rng=rng, name="item"),
        embedding_lr=0.05,
        rng=rng,
    )


def test_single_pair_batch_is_zero_loss_without_update() -> None:
    trainer = _table_trainer()
    before_u = trainer.user_tower.table.copy()
    before_i = trainer.item_tower.table.copy()

    assert trainer.train_step(np.array([1]), np.array([2])) == 0.0
    np.testing.assert_array_equal(trainer.user_tower.table, before_u)
    np.testing.assert_array_equal(trainer.item_tower.table, before_i)


def test_empty_batch_raises() -> None:
    with pytest.raises(NumericInstabilityError):
        _table_trainer().train_step(np.array([], dtype=np.int64), np.array([], dtype=np.int64))


def test_non_finite_batch_raises_before_any_write() -> None:
    trainer = _table_trainer()
    trainer.user_tower.table[0, 0] = np.nan
    before_i = trainer.item_tower.table.copy()
    before_u = trainer.user_tower.table[1:].copy()

    with pytest.raises(NumericInstabilityError):
        trainer.train_step(np.array([0, 1, 2]), np.array([0, 1, 2]))

    np.testing.assert_array_equal(trainer.item_tower.table, before_i)
    np.testing.assert_array_equal(trainer.user_tower.table[1:], before_u)


def test_iter_epoch_skips_bad_batches_and_yields_each_batch() -> None:
    trainer = _table_trainer()
    trainer.user_tower.table[3] = np.inf

    results = list(
        trainer.iter_epoch(np.array([0, 1, 2, 3]), np.array([0, 1, 2, 3]), batch_size=2, shuffle=False)
    )

    assert [r.batch for r in results] == [0, 1]
    assert results[0].loss is not None
    assert results[1].loss is None


def test_single_pair_tail_batch_stays_out_of_epoch_loss() -> None:
    pairs = [Interaction(k % 8, (k + 1) % 8, 5.0) for k in range(17)]
    model = TwoTowerModel("simple", embed_dim=4, batch_size=8, convergence_threshold=None, seed=2)
    model.initialize(range(8), range(8))

    losses = model.train(pairs, epochs=1)

    assert len(model.batch_losses) == 2
    assert losses[0] == pytest.approx(np.mean(model.batch_losses))


def test_epoch_of_single_pairs_reports_zero_without_updates() -> None:
    trainer = _table_trainer()
    before = trainer.user_tower.table.copy()

    loss = trainer.train_epoch(np.array([0, 1, 2]), np.array([0, 1, 2]), batch_size=1)

    assert loss == 0.0
    assert trainer.batch_losses == []
    np.testing.assert_array_equal(trainer.user_tower.table, before)


def test_tables_and_networks_get_separate_learning_rates() -> None:
    rng = np.random.default_rng(1)
    table = EmbeddingTower(3, 2, rng=rng)
    net = MLPTower(np.eye(3), hidden_units=4, dim=2, rng=rng)
    trainer = ContrastiveTrainer(net, table, embedding_lr=0.1, tower_lr=0.001, rng=rng)

    assert trainer._lr_for(table) == 0.1
    assert trainer._lr_for(net) == 0.001


def test_simple_towers_loss_trends_down(neighbour_pairs: list[Interaction]) -> None:
    model = TwoTowerModel(
        "simple",
        embed_dim=8,
        embedding_lr=0.05,
        batch_size=8,
        convergence_threshold=None,
        seed=0,
    )
    model.initialize(range(8), range(8))

    losses = model.train(neighbour_pairs, epochs=30)

    assert len(losses) == 30
    assert np.mean(losses[-3:]) < np.mean(losses[:3])
    assert len(model.batch_losses) == 30 * 4


def test_mlp_towers_loss_trends_down(
    neighbour_pairs: list[Interaction],
    item_genres: dict[int, np.ndarray],
) -> None:
    rng = np.random.default_rng(7)
    user_feats = {u: rng.random(3) for u in range(8)}
    model = TwoTowerModel(
        "mlp",
        embed_dim=8,
        hidden_units=16,
        dropout=0.0,
        tower_lr=0.01,
        batch_size=8,
        convergence_threshold=None,
        seed=1,
    )
    model.initialize(range(8), range(8))
    model.set_user_features(user_feats)
    model.set_item_features(item_genres)

    losses = model.train(neighbour_pairs, epochs=40)

    assert np.mean(losses[-3:]) < np.mean(losses[:3])
    assert model.item_embeddings().shape == (8, 8)


def test_mlp_towers_need_feature_tables(neighbour_pairs: list[Interaction]) -> None:
    model = TwoTowerModel("mlp", seed=0)
    model.initialize(range(8), range(8))

    with pytest.raises(UninitializedModelError):
        model.predict(0, 0)
    with pytest.raises(UninitializedModelError):
        model.train(neighbour_pairs, epochs=1)


def test_two_tower_predict_and_scores() -> None:
    model = TwoTowerModel("simple", embed_dim=4, seed=3)
    model.initialize(["a", "b"], ["x", "y", "z"])

    assert 1.0 <= model.predict("a", "x") <= 5.0
    scores = model.score_items("a", ["z", "x"])
    u = model.user_embedding("a")
    items = model.item_embeddings()
    np.testing.assert_allclose(scores, [items[2] @ u, items[0] @ u])
    with pytest.raises(KeyError):
        model.score_items("nobody", ["x"])


def test_convergence_stop(neighbour_pairs: list[Interaction]) -> None:
    model = TwoTowerModel(
        "simple",
        embed_dim=4,
        batch_size=8,
        convergence_threshold=1e9,
        convergence_min_epochs=6,
        seed=4,
    )
    model.initialize(range(8), range(8))

    assert len(model.train(neighbour_pairs, epochs=20)) == 6


def test_retraining_mlp_towers_keeps_learned_weights(
    neighbour_pairs: list[Interaction],
    item_genres: dict[int, np.ndarray],
) -> None:
    model = TwoTowerModel("mlp", embed_dim=4, hidden_units=8, batch_size=8, convergence_threshold=None, seed=5)
    rec = EmbeddingRecommender(model, item_features=item_genres, item_feature_dim=8)
    rec.initialize(range(8), range(8))

    rec.train(neighbour_pairs, epochs=3)
    item_tower = model.item_tower
    trainer = model.trainer
    weights = item_tower.layers[0].weights
    snapshot = weights.copy()

    rec.train(neighbour_pairs, epochs=0)

    assert model.item_tower is item_tower
    assert model.trainer is trainer
    assert model.item_tower.layers[0].weights is weights
    np.testing.assert_array_equal(weights, snapshot)


def test_new_feature_width_rebuilds_tower() -> None:
    model = TwoTowerModel("mlp", embed_dim=4, hidden_units=8, seed=6)
    model.initialize(range(3), range(3))
    model.set_item_features({i: np.ones(2) for i in range(3)})
    first = model.item_tower

    model.set_item_features({i: np.full(2, 0.5) for i in range(3)})
    assert model.item_tower is first
    np.testing.assert_array_equal(first.features, np.full((3, 2), 0.5))

    model.set_item_features({i: np.ones(5) for i in range(3)})
    assert model.item_tower is not first
    assert model.item_tower.features.shape == (3, 5)
