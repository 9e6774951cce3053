"""YAML-backed configuration for training and serving."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class DataConfig:
    raw_dir: str = "data/ml-100k"
    max_interactions: int = 20000
    min_interactions: int = 10
    qualified_min_ratings: int = 20
    item_feature_dim: int = 19


@dataclass(frozen=True)
class FactorizationConfig:
    embed_dim: int = 32
    epochs: int = 50
    lr: float = 0.01
    l2: float = 0.02
    init_std: float = 0.1
    min_epochs: int = 10
    tolerance: float = 1e-4


@dataclass(frozen=True)
class MLPConfig:
    encoder: str = "features"  # "features" | "hashed"
    hashed_width: int = 64
    hidden_sizes: tuple[int, ...] = (32, 16)
    epochs: int = 40
    lr: float = 0.005
    l2: float = 1e-4
    dropout: float = 0.2
    lr_decay: float = 0.95
    target_epsilon: float = 0.05
    min_epochs: int = 20
    tolerance: float = 1e-4


@dataclass(frozen=True)
class TowerConfig:
    embed_dim: int = 32
    hidden_units: int = 64
    epochs: int = 15
    batch_size: int = 256
    embedding_lr: float = 0.01
    tower_lr: float = 0.001
    l2: float = 1e-4
    temperature: float = 1.0
    dropout: float = 0.2
    init_std: float = 0.1
    convergence_threshold: float | None = 1e-3
    convergence_min_epochs: int = 6


@dataclass(frozen=True)
class RecommenderConfig:
    model: str = "both"
    top_k: int = 10
    projection_sample_size: int = 500
    seed: int = 42
    log_level: str = "INFO"
    data: DataConfig = field(default_factory=DataConfig)
    factorization: FactorizationConfig = field(default_factory=FactorizationConfig)
    mlp: MLPConfig = field(default_factory=MLPConfig)
    towers: TowerConfig = field(default_factory=TowerConfig)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    obj = yaml.safe_load(path.read_text())
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValueError(f"Expected YAML mapping at {path}, got {type(obj)}")
    return obj


def _section(cls: type, raw: Any) -> Any:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"config section for {cls.__name__} must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown keys for {cls.__name__}: {unknown}")

    values = dict(raw)
    if "hidden_sizes" in values:
        values["hidden_sizes"] = tuple(int(h) for h in values["hidden_sizes"])
    return cls(**values)


def config_from_dict(raw: dict[str, Any]) -> RecommenderConfig:
    nested = {
        "data": DataConfig,
        "factorization": FactorizationConfig,
        "mlp": MLPConfig,
        "towers": TowerConfig,
    }
    top = {k: v for k, v in raw.items() if k not in nested}
    sections = {name: _section(cls, raw.get(name)) for name, cls in nested.items()}
    base = _section(RecommenderConfig, top)
    return RecommenderConfig(
        model=base.model,
        top_k=base.top_k,
        projection_sample_size=base.projection_sample_size,
        seed=base.seed,
        log_level=base.log_level,
        **sections,
    )


def load_config(path: Path | str) -> RecommenderConfig:
    return config_from_dict(_load_yaml(Path(path)))
