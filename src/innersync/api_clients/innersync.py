"""Innersync API client: login and timetable upload."""

import hashlib
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urljoin

import aiohttp

from .base import APIConnectionError, AuthenticationError, LoginError, UploadError, UploadResult
from ..auth.token_cache import TokenCache
from ..config.schema import DEFAULT_API_BASE_URL, LoginConfig
from ..utils.logging import get_logger, log_duration


UPLOAD_PATH = "/api/timetable-sync"
LOGIN_PATH = "/api/login"

# Upload field -> filename expected by the server
UPLOAD_FIELDS = {
    "student_course": "StudentCourse.csv",
    "student_timetable": "StudentTimetable.csv",
    "timetable": "Timetable.csv",
}

FileMap = Union[Mapping[str, Any], Sequence[Any]]
Credentials = Union[LoginConfig, Mapping[str, Any], None]


def normalize_file_map(files: Optional[FileMap]) -> Dict[str, Optional[str]]:
    """Map upload fields to file paths.

    Accepts either a mapping keyed by upload field or a sequence of three paths
    in field order.
    """
    if files is None:
        files = {}
    if isinstance(files, Mapping):
        values = [files.get(field) for field in UPLOAD_FIELDS]
    else:
        values = list(files)[:len(UPLOAD_FIELDS)]
        values += [None] * (len(UPLOAD_FIELDS) - len(values))
    return {
        field: str(value) if value else None
        for field, value in zip(UPLOAD_FIELDS, values)
    }


def compute_payload_hash(contents: Iterable[bytes]) -> str:
    """SHA-256 hex digest over the concatenated file contents."""
    digest = hashlib.sha256()
    for chunk in contents:
        digest.update(chunk)
    return digest.hexdigest()


def _coerce_credentials(credentials: Credentials) -> LoginConfig:
    if credentials is None:
        return LoginConfig()
    if isinstance(credentials, LoginConfig):
        return credentials
    return LoginConfig.model_validate(dict(credentials))


def _parse_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


class InnersyncClient:
    """Client for the Innersync timetable sync API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_cache: Optional[TokenCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 60.0
    ):
        """Initialize the client.

        Args:
            base_url: API base URL, defaults to the public service
            token_cache: Cache used for tokens obtained through login
            session: Optional shared session; one is opened per request otherwise
            timeout_seconds: Total timeout applied to each request
        """
        self.base_url = base_url or DEFAULT_API_BASE_URL
        self.token_cache = token_cache or TokenCache()
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.logger = get_logger(self.__class__.__name__)

    async def __aenter__(self):
        """Async context manager entry."""
        if not self.session:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    def build_url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session:
            yield self.session
            return
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            yield session

    async def _post(self, url: str, **kwargs) -> Tuple[int, Any]:
        """POST and return the status with the parsed body."""
        try:
            async with self._session() as session:
                async with session.post(url, **kwargs) as response:
                    text = await response.text()
                    return response.status, _parse_body(text)
        except aiohttp.ClientError as e:
            raise APIConnectionError(f"Network error: {e}")

    async def login(self, credentials: Credentials) -> Optional[str]:
        """Exchange login credentials for an API token.

        Returns:
            The token, or None when credentials are missing or the server
            returned no token

        Raises:
            LoginError: If the server rejects the login
        """
        login = _coerce_credentials(credentials)
        if not login.is_complete:
            self.logger.warning("Login credentials missing; cannot fetch token")
            return None

        url = self.build_url(LOGIN_PATH)
        payload = {
            "email": login.email,
            "password": login.password,
            "device_name": login.device_name,
            "replace_existing": login.replace_existing,
        }

        self.logger.info("Requesting API token", endpoint=url, device_name=login.device_name)
        status, body = await self._post(
            url,
            json=payload,
            headers={"Accept": "application/json"}
        )

        if not 200 <= status < 300:
            self.logger.error("Login failed", status=status, body=body)
            raise LoginError(f"Login failed with status {status}", status=status)

        token = body.get("token") if isinstance(body, dict) else None
        if token:
            self.token_cache.write(token)
        return token or None

    @log_duration
    async def upload_timetable(
        self,
        files: FileMap,
        api_token: Optional[str] = None,
        login: Credentials = None
    ) -> UploadResult:
        """Upload the three export files.

        Token resolution order is explicit token, cached token, then login.
        A 401 on a token that was not given explicitly clears the cache, logs
        in again and attempts the upload once more with the new token.

        Returns:
            UploadResult; skipped when files or a token are missing, or when
            the server reports a duplicate payload

        Raises:
            AuthenticationError: If the token is rejected and cannot be renewed
            UploadError: On any other non-success response
            APIConnectionError: On network failure
        """
        resolved = normalize_file_map(files)
        missing = [field for field, path in resolved.items() if not path]
        if missing:
            self.logger.warning("Missing file paths", fields=missing)
            return UploadResult.skip("missing files")

        contents = {field: Path(path).read_bytes() for field, path in resolved.items()}
        payload_hash = compute_payload_hash(contents.values())

        token = await self._resolve_token(api_token, login)
        already_retried = False
        while True:
            if not token:
                self.logger.warning("No API token available; upload skipped")
                return UploadResult.skip("no token")

            status, body = await self._send(token, contents, payload_hash)

            if status == 401:
                if api_token:
                    raise AuthenticationError("Explicit API token was rejected", status=status)
                if already_retried:
                    raise AuthenticationError(
                        "Upload unauthorized after re-authentication", status=status
                    )
                self.logger.warning("Token rejected, clearing cache and retrying once")
                self.token_cache.clear()
                token = await self.login(login)
                already_retried = True
                continue

            if not 200 <= status < 300:
                self.logger.error("Upload failed", status=status, body=body)
                raise UploadError(status, body)

            break

        self.logger.info("Upload completed", status=status, payload_hash=payload_hash)
        message = body.get("message") if isinstance(body, dict) else None
        return UploadResult(
            skipped=isinstance(body, dict) and body.get("status") == "skipped",
            reason=message,
            status=status,
            payload_hash=payload_hash,
            message=message,
            body=body
        )

    async def _resolve_token(self, api_token: Optional[str], login: Credentials) -> Optional[str]:
        if api_token:
            return api_token
        cached = self.token_cache.read()
        if cached:
            return cached
        return await self.login(login)

    async def _send(self, token: str, contents: Dict[str, bytes], payload_hash: str) -> Tuple[int, Any]:
        url = self.build_url(UPLOAD_PATH)
        form = aiohttp.FormData()
        for field, filename in UPLOAD_FIELDS.items():
            form.add_field(
                field,
                contents[field],
                filename=filename,
                content_type="application/octet-stream"
            )
        form.add_field("payload_hash", payload_hash)

        self.logger.info("Uploading timetable files", endpoint=url, payload_hash=payload_hash)
        return await self._post(
            url,
            data=form,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json"
            }
        )


# Utility functions for easy integration

async def upload_timetable(
    files: FileMap,
    api_base_url: Optional[str] = None,
    api_token: Optional[str] = None,
    login: Credentials = None,
    token_cache_path: Optional[Union[str, Path]] = None
) -> UploadResult:
    """Upload export files using a one-off client."""
    client = InnersyncClient(api_base_url, TokenCache(token_cache_path))
    return await client.upload_timetable(files, api_token=api_token, login=login)


async def login_for_token(
    api_base_url: Optional[str],
    credentials: Credentials,
    token_cache_path: Optional[Union[str, Path]] = None
) -> Optional[str]:
    """Log in and return a token, caching it when a cache path is given."""
    client = InnersyncClient(api_base_url, TokenCache(token_cache_path))
    return await client.login(credentials)


def clear_cached_token(token_cache_path: Optional[Union[str, Path]]) -> None:
    TokenCache(token_cache_path).clear()
