"""API clients package for the remote sync service."""

from .base import (
    UploadResult,
    AuthenticationError,
    LoginError,
    UploadError,
    APIConnectionError
)

from .innersync import (
    InnersyncClient,
    upload_timetable,
    login_for_token,
    clear_cached_token,
    compute_payload_hash,
    normalize_file_map
)

__all__ = [
    # Base classes and exceptions
    "UploadResult",
    "AuthenticationError",
    "LoginError",
    "UploadError",
    "APIConnectionError",

    # Client implementation
    "InnersyncClient",
    "upload_timetable",
    "login_for_token",
    "clear_cached_token",
    "compute_payload_hash",
    "normalize_file_map"
]
