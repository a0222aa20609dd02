#!/usr/bin/env python3
"""
Exception types shared across the checker.
"""


class CheckerError(Exception):
    """Base class for errors raised by wa_checker."""


class ConfigurationError(CheckerError):
    """Batch can't start: missing API key, empty batch, invalid settings."""


class InvalidTransitionError(CheckerError):
    """A session status change that the state machine doesn't allow."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move session from '{current}' to '{target}'")
        self.current = current
        self.target = target


class StorageError(CheckerError):
    """Reading or writing persisted settings/sessions failed."""


class ExportError(CheckerError):
    """Writing an export file failed."""


class FileParseError(CheckerError):
    """An input file could not be read."""
