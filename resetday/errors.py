"""Exception types shared across the resetday package."""


class ResetDayError(Exception):
    """Base class for all resetday errors."""


class RepositoryError(ResetDayError):
    """The completion repository could not be read or written."""


class NotificationUnavailable(ResetDayError):
    """A notification channel is denied, unsupported or not configured."""


class ClockError(ResetDayError, ValueError):
    """The reference timezone could not be resolved or converted."""


class ConfigError(ResetDayError, ValueError):
    """A configuration value is missing or malformed."""
