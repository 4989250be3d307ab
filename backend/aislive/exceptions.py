"""Custom exception hierarchy for aislive."""

from __future__ import annotations


class AISLiveError(Exception):
    """Base exception for all aislive errors."""


class MissingAPIKeyError(AISLiveError):
    """The upstream feed cannot be used without an API key."""


class BoundingBoxError(AISLiveError, ValueError):
    """A spatial query was given missing or out-of-range bounds."""

    def __init__(self, message: str, *, param: str = "") -> None:
        self.param = param
        super().__init__(message)
