"""
Exception hierarchy.

``ConfigurationError`` covers everything a caller can fix by changing
options or files.  ``UnknownParameterError`` is kept apart so that a
misspelled option name can be told from a bad value.
"""

from __future__ import annotations


class CNNFeatError(Exception):
    """Base class for all cnnfeat errors."""


class ConfigurationError(CNNFeatError):
    """A required option is missing or an option/file is invalid."""


class LoadFailure(ConfigurationError):
    """The network definition or weights could not be loaded."""


class InvalidParameterValueError(ConfigurationError, ValueError):
    """A known option was given a value of the wrong type or range."""


class UnknownParameterError(CNNFeatError, KeyError):
    """No option with the given name exists."""

    def __init__(self, name: str, known: tuple[str, ...] = ()):
        self.name = name
        self.known = tuple(known)
        super().__init__(name)

    def __str__(self) -> str:
        msg = f"Unknown parameter: '{self.name}'"
        if self.known:
            msg += f". Available: {list(self.known)}"
        return msg
