from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

ROOT_MARKERS: tuple[str, ...] = ("config.yaml", "pyproject.toml", ".git")


@dataclass(frozen=True)
class ProjectPaths:
    raw_dir: Path
    config_path: Path

    @classmethod
    def from_repo_root(
        cls,
        repo_root: Path,
        *,
        raw_dir: Path | str = "data/ml-100k",
        config_path: Path | str = "config.yaml",
    ) -> "ProjectPaths":
        return cls(raw_dir=resolve_under(repo_root, raw_dir), config_path=resolve_under(repo_root, config_path))


def resolve_under(root: Path, p: Path | str) -> Path:
    """Absolute paths pass through; relative ones are taken from `root`."""
    path = Path(p)
    return (path if path.is_absolute() else root / path).resolve()


def _find_root(start: Path) -> Path | None:
    for candidate in (start, *start.parents):
        if any((candidate / m).exists() for m in ROOT_MARKERS):
            return candidate
    return None


def get_repo_root() -> Path:
    """Nearest directory holding one of ROOT_MARKERS, from the cwd first, then from this file."""
    root = _find_root(Path.cwd().resolve()) or _find_root(Path(__file__).resolve().parent)
    if root is None:
        raise FileNotFoundError(f"Could not locate repo root (expected one of {ROOT_MARKERS}).")
    return root
