"""Exception types raised by migrator."""

from __future__ import annotations


class MigratorError(Exception):
    """Base class for all migrator errors."""


class PlanError(MigratorError, ValueError):
    """A plan (or one of its phases, tasks or blocks) is malformed."""


class ExpressionError(MigratorError):
    """An enable_if expression could not be parsed or evaluated."""
