from __future__ import annotations


class RunbookError(Exception):
    """Base class for errors raised by runbooknb."""


class OptionsSyntaxError(RunbookError, ValueError):
    """An @options payload is neither JSON nor a plain object literal."""

    def __init__(self, message: str, position: int = -1):
        super().__init__(message)
        self.position = position


class ConfigError(RunbookError):
    pass
