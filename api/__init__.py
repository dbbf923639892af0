"""HTTP boundary for Unfold."""

from .router import router

__all__ = ["router"]
