"""
Exception hierarchy for the relay pipeline
"""
from typing import List, Optional, Tuple


class RelayError(Exception):
    """Base class for all pipeline errors"""


class ValidationError(RelayError):
    """Malformed identifier or input, never retried"""


class EngineError(RelayError):
    """A single download engine failed"""

    def __init__(self, engine: str, message: str):
        super().__init__(f"[{engine}] {message}")
        self.engine = engine


class EngineNotFoundError(RelayError):
    """No engine is registered for a routed platform"""


class ChainExhaustedError(RelayError):
    """Every configured download engine failed"""

    def __init__(self, message: str, errors: Optional[List[Tuple[str, BaseException]]] = None):
        super().__init__(message)
        self.errors = errors or []


class MediaTooLargeError(RelayError):
    """Media exceeds the attachment size limit"""

    def __init__(self, url: str, size: Optional[int], limit: int):
        super().__init__(f"Media at {url} exceeds {limit} bytes (size={size})")
        self.url = url
        self.size = size
        self.limit = limit


class DeliveryError(RelayError):
    """The messaging platform could not be reached or refused the message"""


class TransientDeliveryError(DeliveryError):
    """Rate limit, server error or dropped connection; worth retrying"""


class AttachmentTooLargeError(DeliveryError):
    """The messaging platform rejected an upload for size"""


class DeliveryPendingError(RelayError):
    """Raised by a handler when its event is not yet delivered"""
