"""Utility helpers for the coordinator."""

from .logging import configure_logging

__all__ = ["configure_logging"]
