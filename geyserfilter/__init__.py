"""Subscription filters, limits and message models for Geyser update streams."""

__version__ = "0.1.0"

__all__ = ["config", "limits", "message", "parse", "updates", "filter"]