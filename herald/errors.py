"""
Exception hierarchy for Herald.

Configuration errors are fatal at startup; fetch, diff and delivery
errors are recovered per subscription or per target at runtime.
"""


class HeraldError(Exception):
    """Base class for all Herald errors."""

    pass


class ConfigError(HeraldError):
    """Raised when the configuration cannot be loaded or fails validation."""

    pass


class FetchError(HeraldError):
    """Raised by a platform adapter when a snapshot cannot be obtained."""

    pass


class DiffError(HeraldError):
    """Raised when two snapshots cannot be compared."""

    pass


class DeliveryError(HeraldError):
    """Raised by a notification channel when a message is not delivered."""

    pass
