from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    """Why a single recognition attempt did not produce an answer."""

    REMOTE_UNAVAILABLE = "remote_unavailable"
    REMOTE_TIMEOUT = "remote_timeout"
    REMOTE_UNCLEAR = "remote_unclear"
    REMOTE_ERROR = "remote_error"
    LOCAL_TIMEOUT = "local_timeout"
    LOCAL_ERROR = "local_error"
    LOCAL_LOW_CONFIDENCE = "local_low_confidence"
    NO_CATALOG_MATCH = "no_catalog_match"


class CardLensError(Exception):
    pass


class CatalogError(CardLensError):
    pass


class EmptyCatalogError(CatalogError):
    def __init__(self, message: str = "Cannot build a catalog index from zero records"):
        super().__init__(message)


class EnhancementError(CardLensError):
    pass


class UnsupportedProfileError(EnhancementError):
    def __init__(self, tag):
        self.tag = tag
        super().__init__(f"No enhancement profile for card type '{tag}'")


class RecognitionError(CardLensError):
    """Base for failures on the recognition path. Carries the matching FailureReason."""

    reason: FailureReason = FailureReason.LOCAL_LOW_CONFIDENCE

    def __init__(self, message: str = "", reason: Optional[FailureReason] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason.value)


class RemoteUnavailableError(RecognitionError):
    reason = FailureReason.REMOTE_UNAVAILABLE


class RemoteTimeoutError(RecognitionError):
    reason = FailureReason.REMOTE_TIMEOUT


class RemoteUnclearError(RecognitionError):
    reason = FailureReason.REMOTE_UNCLEAR


class LocalTimeoutError(RecognitionError):
    reason = FailureReason.LOCAL_TIMEOUT


class LocalLowConfidenceError(RecognitionError):
    reason = FailureReason.LOCAL_LOW_CONFIDENCE
