"""Exceptions raised by the multigrid framework."""

from __future__ import annotations


class MultigridError(Exception):
    """Base class for all multigrid errors."""


class ConfigurationError(MultigridError):
    """Fatal setup error: incompatible options or an inconsistent hierarchy."""


class NumericalBreakdown(MultigridError):
    """Numerical failure during setup, with diagnostic context.

    Parameters
    ----------
    message : str
    level : index of the level being built (None when unknown)
    residual : residual of the failing fixed point, if any
    """

    def __init__(self, message: str, level: int | None = None, residual: float | None = None):
        self.level = level
        self.residual = residual
        context = []
        if level is not None:
            context.append(f"level={level}")
        if residual is not None:
            context.append(f"residual={residual:.3e}")
        super().__init__(f"{message} ({', '.join(context)})" if context else message)


class ZeroDiagonalError(NumericalBreakdown, ConfigurationError):
    """Operator has zero diagonal entries on free dofs; no diagonal smoother exists."""
