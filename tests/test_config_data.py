from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from towerrec.config import RecommenderConfig, config_from_dict, load_config
from towerrec.data import interactions_from_frame, interactions_to_frame, load_movielens_100k
from towerrec.pipeline import expand_kinds, prepare_training_data


def _write_ml100k(root: Path, *, bad_rating: bool = False) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    rows = [
        "1\t10\t5\t100",
        "1\t20\t3\t101",
        "2\t10\t4\t102",
        f"2\t30\t{9 if bad_rating else 1}\t103",
    ]
    (root / "u.data").write_text("\n".join(rows) + "\n")
    flags_full = "|".join(["0", "1"] + ["0"] * 17)
    items = [
        f"10|Toy Story (1995)|01-Jan-1995||http://x|{flags_full}",
        f"20|GoldenEye (1995)|01-Jan-1995||http://y|{flags_full}",
        "30|Short Row (1996)|01-Jan-1996||http://z|0|0|1",
    ]
    (root / "u.item").write_text("\n".join(items) + "\n", encoding="latin-1")
    return root


def test_load_config_overrides_and_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("model: simple\nseed: 7\nmlp:\n  hidden_sizes: [8, 4]\ntowers:\n  batch_size: 32\n")

    cfg = load_config(path)

    assert cfg.model == "simple"
    assert cfg.seed == 7
    assert cfg.mlp.hidden_sizes == (8, 4)
    assert cfg.towers.batch_size == 32
    assert cfg.towers.embedding_lr == RecommenderConfig().towers.embedding_lr
    assert cfg.factorization.embed_dim == 32


def test_empty_config_is_all_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("")

    assert load_config(path) == RecommenderConfig()


def test_unknown_config_keys_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown keys"):
        config_from_dict({"towers": {"batchsize": 8}})
    with pytest.raises(ValueError, match="Unknown keys"):
        config_from_dict({"modle": "simple"})


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_repo_config_loads() -> None:
    cfg = load_config(Path(__file__).resolve().parents[1] / "config.yaml")

    assert cfg.model == "both"
    assert expand_kinds(cfg.model) == ["simple", "mlp_tower"]


def test_expand_kinds() -> None:
    assert expand_kinds("mlp") == ["mlp"]
    assert "factorization" in expand_kinds("all")
    with pytest.raises(ValueError):
        expand_kinds("svd")


def test_load_movielens_and_prepare(tmp_path: Path) -> None:
    raw = load_movielens_100k(_write_ml100k(tmp_path / "ml"), max_interactions=3)

    assert len(raw.ratings) == 3
    assert len(raw.items) == 3

    data = prepare_training_data(raw)
    assert [i.item_id for i in data.interactions] == [10, 20, 10]
    assert data.titles[10] == "Toy Story"
    assert data.years[30] == 1996
    np.testing.assert_array_equal(data.item_features[30][:3], [0.0, 0.0, 1.0])
    assert data.item_features[30].shape == (19,)
    assert data.item_features[10][1] == 1.0


def test_out_of_range_rating_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="outside 1..5"):
        load_movielens_100k(_write_ml100k(tmp_path / "ml", bad_rating=True))


def test_frame_conversion_keeps_order(tmp_path: Path) -> None:
    raw = load_movielens_100k(_write_ml100k(tmp_path / "ml"))

    inters = interactions_from_frame(raw.ratings)
    back = interactions_to_frame(inters)

    assert back["userId"].tolist() == [1, 1, 2, 2]
    assert back["timestamp"].tolist() == [100, 101, 102, 103]
    assert inters[3].rating == 1.0
