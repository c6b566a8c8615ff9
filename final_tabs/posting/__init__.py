# Posting module

from .history import DEFAULT_HISTORY_FILE, PostHistory
from .publisher import (
    FailureKind,
    PublishAuthError,
    PublishError,
    Publisher,
    PublishResult,
    PublishStatus,
    PublishTransientError,
    classify_posting_error,
    compose_caption,
)

__all__ = [
    "DEFAULT_HISTORY_FILE",
    "PostHistory",
    "FailureKind",
    "PublishAuthError",
    "PublishError",
    "Publisher",
    "PublishResult",
    "PublishStatus",
    "PublishTransientError",
    "classify_posting_error",
    "compose_caption",
]
