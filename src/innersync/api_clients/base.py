"""Upload result structure and API client exceptions."""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class UploadResult:
    """Outcome of an upload attempt."""

    skipped: bool
    reason: Optional[str] = None
    status: Optional[int] = None
    payload_hash: Optional[str] = None
    message: Optional[str] = None
    body: Optional[Any] = None

    @classmethod
    def skip(cls, reason: str) -> "UploadResult":
        return cls(skipped=True, reason=reason, message=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "reason": self.reason,
            "status": self.status,
            "payload_hash": self.payload_hash,
            "message": self.message,
            "body": self.body
        }


class AuthenticationError(Exception):
    """Raised when API authentication fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class LoginError(AuthenticationError):
    """Raised when the login endpoint rejects a request."""
    pass


class UploadError(Exception):
    """Raised when the upload endpoint returns a non-success status."""

    def __init__(self, status: int, body: Optional[Any] = None):
        super().__init__(f"Upload failed with status {status}")
        self.status = status
        self.body = body


class APIConnectionError(Exception):
    """Raised when API connection fails."""
    pass
