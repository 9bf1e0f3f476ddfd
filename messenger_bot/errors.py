"""Error taxonomy shared by the pipeline and its external capabilities."""

from __future__ import annotations


class BotError(Exception):
    """Base class for recoverable pipeline errors."""


class TransientError(BotError):
    """Network, timeout, or rate-limit failure on an external capability."""


class UnsupportedRequestShape(BotError):
    """The selected model family rejected the request shape."""


class ConfigurationMissing(BotError):
    """A required secret or config value is absent."""


class DataLoadError(BotError):
    """A static data artifact is missing or corrupt."""
