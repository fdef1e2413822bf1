"""Session orchestration entrypoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from .session import SolverSession

__all__ = ["SolverSession"]


def __getattr__(name: str) -> Any:
    if name == "SolverSession":
        from .session import SolverSession

        return SolverSession
    raise AttributeError("module '{}' has no attribute '{}'".format(__name__, name))
