"""Exceptions raised by the training and ranking core."""

from __future__ import annotations


class TowerRecError(Exception):
    """Base class for towerrec failures."""


class UninitializedModelError(TowerRecError, RuntimeError):
    """A model was used before `initialize` (or before its feature tables were set)."""


class DegenerateTargetError(TowerRecError, ValueError):
    """A rating cannot be mapped to a finite regression target."""


class NumericInstabilityError(TowerRecError, ArithmeticError):
    """A step produced a non-finite loss or gradient; no parameters were written."""


class InsufficientDataError(TowerRecError, ValueError):
    """Too few interactions to train on."""
