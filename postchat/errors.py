"""Exception taxonomy for the post chat service.

- ValidationError: malformed input or an empty required field; never retried.
- UnknownIntentError: the classifier could not place a message in a known intent.
- NotAvailableError: the post is missing or chat is not open for it.
- UpstreamError: the embedding/generation model or the job broker failed.
- PartialFailureError: a primary mutation committed but dependent cleanup failed.
- PostBusyError: the per-post lock could not be acquired in time.
"""
from typing import Optional


class ChatServiceError(Exception):
    """Base class for all service errors."""


class ValidationError(ChatServiceError):
    """Input rejected before any side effect.

    Attributes:
        code: Stable machine-readable reason, e.g. "empty_prompt".
    """

    def __init__(self, message: str, code: str = "invalid"):
        super().__init__(message)
        self.code = code


class UnknownIntentError(ChatServiceError):
    """The message did not map to any known intent."""


class NotAvailableError(ChatServiceError):
    """The post does not exist or AI chat is not available for it."""


class UpstreamError(ChatServiceError):
    """An external model or broker call failed or returned malformed data."""


class PartialFailureError(ChatServiceError):
    """The primary mutation committed but a dependent cleanup step failed.

    Callers retry the cleanup; the committed mutation is not rolled back.
    """

    def __init__(self, message: str, post_id: Optional[str] = None):
        super().__init__(message)
        self.post_id = post_id


class PostBusyError(ChatServiceError):
    """Another process holds the lock for this post."""
