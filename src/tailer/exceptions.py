"""Custom exceptions for the file tailer package."""


class TailerError(Exception):
    """Base exception for all tailer errors."""
    pass


class ConfigError(TailerError, ValueError):
    """Invalid configuration value."""
    pass


class NoPositionStorePathError(ConfigError):
    """No position store path was given and none could be derived."""
    pass


class PositionStoreError(TailerError):
    """Error related to the position store."""
    pass


class InvalidStateTransitionError(TailerError):
    """A watched file was asked to move along an undefined transition."""
    pass


class ContentFormatError(TailerError):
    """File content cannot be decoded (e.g. a corrupt compressed archive)."""
    pass


class TailerNotRunningError(TailerError):
    """Tailer is not running."""
    pass


class TailerAlreadyRunningError(TailerError):
    """Tailer is already running."""
    pass
