"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class FeedVaultError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(FeedVaultError):
    """Raised for missing credentials or issues loading and validating configuration."""


class AlreadyRunningError(FeedVaultError):
    """Raised when a sync or task is started while a run for the same id is active."""


class NotFoundError(FeedVaultError):
    """Raised when a parent or task id does not exist in the content store."""


class InvalidScheduleError(FeedVaultError):
    """Raised when a cron expression cannot be parsed."""


class ProviderError(FeedVaultError):
    """Raised when the content provider returns an unusable response."""


class ItemDownloadError(FeedVaultError):
    """Raised when a single item cannot be downloaded or persisted."""

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"Item '{item_id}' failed: {reason}")
        self.item_id = item_id
        self.reason = reason


class MediaProbeError(FeedVaultError):
    """Raised when the duration of a downloaded media file cannot be read."""


class SessionAbortedError(FeedVaultError):
    """
    Internal signal raised at a cancellation checkpoint. Always converted to a
    stopped terminal state at the session boundary.
    """
