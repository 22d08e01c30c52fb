"""Multigrid hierarchy and V-cycle."""

from .level import Level, RefinementKind
from .hierarchy import (
    Hierarchy,
    build_hierarchy,
    build_form,
    assemble_level_operator,
    level_orders,
    METHODS,
)
from .cycle import MultigridCycle

__all__ = [
    "Level",
    "RefinementKind",
    "Hierarchy",
    "build_hierarchy",
    "build_form",
    "assemble_level_operator",
    "level_orders",
    "METHODS",
    "MultigridCycle",
]
