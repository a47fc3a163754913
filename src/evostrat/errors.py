"""Exception hierarchy shared by the strategy engine."""

from __future__ import annotations


class EvoStratError(Exception):
    """Base class for every error raised by :mod:`evostrat`."""


class GenerationError(EvoStratError):
    """A genome could not be turned into an expression tree."""


class ValidationError(EvoStratError):
    """An expression tree failed the structural or type check."""


class EvaluationError(EvoStratError):
    """Compiling or simulating a strategy failed."""


class MetricError(EvoStratError):
    """A single performance metric could not be computed."""


class ConfigurationError(EvoStratError, ValueError):
    """Invalid run parameters, raised before any computation starts."""


class DatasetError(EvoStratError, ValueError):
    """The supplied price data cannot be used."""
