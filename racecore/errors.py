"""
errors.py — Exception types and the storage-failure wrapper.

Public operations never leak sqlite3 errors to callers. The original error
is logged and a StorageError with a static, human-readable message is raised
in its place. Validation problems in import documents use a separate type so
callers can tell "your file is wrong" apart from "the database failed".
"""

from __future__ import annotations

import functools
import logging
import sqlite3

logger = logging.getLogger("racetracker.storage")


class RaceTrackerError(Exception):
    """Base class for all errors raised by racecore."""


class StorageError(RaceTrackerError):
    """A storage operation failed. The message is static and safe to show."""


class RaceNotFoundError(StorageError):
    def __init__(self, message: str = "Race not found"):
        super().__init__(message)


class ImportValidationError(RaceTrackerError):
    """An import document is missing required fields or has the wrong shape."""


def storage_operation(message: str, extra: tuple = ()):
    """Wrap a public operation so storage failures surface as StorageError.

    `extra` lists additional exception types (e.g. KeyError for a malformed
    race config) that should be treated the same way. RaceTrackerError
    subclasses raised inside the operation pass through untouched.
    """
    caught = (sqlite3.Error,) + tuple(extra)

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except RaceTrackerError:
                raise
            except caught as e:
                logger.error("%s: %s", func.__name__, e)
                raise StorageError(message) from e
        return wrapper

    return decorator
