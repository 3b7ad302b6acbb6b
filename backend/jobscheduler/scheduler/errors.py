"""
Exceptions raised by the scheduling core.
"""


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ConfigurationError(SchedulerError):
    """A caller asked for something the registry cannot do (duplicate or unknown job)."""


class PersistenceError(SchedulerError):
    """Reading or writing job configuration or execution history failed."""
