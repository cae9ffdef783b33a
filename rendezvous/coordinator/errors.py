"""Coordinator exception hierarchy."""

from __future__ import annotations


class CoordinatorError(RuntimeError):
    """Base class for coordinator related errors."""


class IllegalTransition(CoordinatorError):
    """Raised when a participant is moved along an edge the state machine forbids."""


class PairingError(CoordinatorError):
    """Raised when a pair would break the pair registry invariants."""
