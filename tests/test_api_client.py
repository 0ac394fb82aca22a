"""Tests for the Innersync API client against a local aiohttp server."""

import hashlib
import json
from pathlib import Path

import pytest
from aiohttp import test_utils, web

from innersync.api_clients import (
    AuthenticationError,
    InnersyncClient,
    LoginError,
    UploadError,
    compute_payload_hash,
    normalize_file_map
)
from innersync.auth import TokenCache


class FakeInnersyncAPI:
    """Records requests and replays queued upload responses."""

    def __init__(self):
        self.upload_responses = []
        self.login_status = 200
        self.login_token = "fresh-token"
        self.uploads = []
        self.logins = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post('/api/login', self._login)
        app.router.add_post('/api/timetable-sync', self._upload)
        return app

    async def _login(self, request):
        self.logins.append(await request.json())
        if self.login_status != 200:
            return web.json_response({"message": "rejected"}, status=self.login_status)
        return web.json_response({"token": self.login_token})

    async def _upload(self, request):
        form = await request.post()
        self.uploads.append({
            "authorization": request.headers.get("Authorization"),
            "fields": sorted(form.keys()),
            "payload_hash": form.get("payload_hash"),
        })
        if self.upload_responses:
            status, body = self.upload_responses.pop(0)
        else:
            status, body = 200, {"status": "ok", "message": "Timetable synced"}
        return web.json_response(body, status=status)


def write_export_files(directory):
    paths = {}
    for field, content in (
        ("student_course", b'"07","7ENG1"\r\n'),
        ("student_timetable", b'"Smith","Jo","07","S1","","","7ENG1"\r\n'),
        ("timetable", b'"1","1","7ENG1","07","ABC","R1","Monday"\r\n'),
    ):
        path = directory / f"{field}.txt"
        path.write_bytes(content)
        paths[field] = str(path)
    return paths


CREDENTIALS = {"email": "admin@school.test", "password": "secret", "device_name": "office-pc"}


class TestHelpers:
    """Module level helpers."""

    def test_payload_hash_is_sha256_of_concatenated_contents(self):
        expected = hashlib.sha256(b"abc" + b"def").hexdigest()
        assert compute_payload_hash([b"abc", b"def"]) == expected

    def test_normalize_file_map_accepts_sequence(self):
        files = normalize_file_map(["a.txt", "b.txt"])

        assert files == {"student_course": "a.txt", "student_timetable": "b.txt", "timetable": None}


class TestUpload:
    """Upload flow, token resolution and the single re-authentication."""

    def setup_method(self):
        self.api = FakeInnersyncAPI()

    @pytest.mark.asyncio
    async def test_upload_with_explicit_token(self, tmp_path):
        files = write_export_files(tmp_path)

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")))
            result = await client.upload_timetable(files, api_token="explicit")

        assert not result.skipped
        assert result.status == 200
        assert result.message == "Timetable synced"

        expected_hash = compute_payload_hash(
            Path(files[field]).read_bytes() for field in ("student_course", "student_timetable", "timetable")
        )
        assert result.payload_hash == expected_hash
        assert self.api.uploads == [{
            "authorization": "Bearer explicit",
            "fields": ["payload_hash", "student_course", "student_timetable", "timetable"],
            "payload_hash": expected_hash,
        }]

    @pytest.mark.asyncio
    async def test_duplicate_payload_is_reported_as_skipped(self, tmp_path):
        self.api.upload_responses = [(200, {"status": "skipped", "message": "Duplicate payload"})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")))
            result = await client.upload_timetable(write_export_files(tmp_path), api_token="explicit")

        assert result.skipped
        assert result.reason == "Duplicate payload"

    @pytest.mark.asyncio
    async def test_missing_files_skip_without_request(self, tmp_path):
        files = write_export_files(tmp_path)
        files["timetable"] = None

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")))
            result = await client.upload_timetable(files, api_token="explicit")

        assert result.skipped
        assert result.reason == "missing files"
        assert self.api.uploads == []

    @pytest.mark.asyncio
    async def test_no_token_and_no_credentials_skips(self, tmp_path):
        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), TokenCache(tmp_path / "token.json"))
            result = await client.upload_timetable(write_export_files(tmp_path))

        assert result.skipped
        assert result.reason == "no token"
        assert self.api.uploads == []
        assert self.api.logins == []

    @pytest.mark.asyncio
    async def test_login_fallback_caches_token(self, tmp_path):
        cache = TokenCache(tmp_path / "token.json")

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), cache)
            result = await client.upload_timetable(write_export_files(tmp_path), login=CREDENTIALS)

        assert not result.skipped
        assert self.api.logins[0]["email"] == "admin@school.test"
        assert self.api.logins[0]["replace_existing"] is True
        assert self.api.uploads[0]["authorization"] == "Bearer fresh-token"
        assert cache.read() == "fresh-token"

    @pytest.mark.asyncio
    async def test_rejected_cached_token_is_renewed_once(self, tmp_path):
        cache = TokenCache(tmp_path / "token.json")
        cache.write("stale-token")
        self.api.upload_responses = [(401, {"message": "Unauthenticated."})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), cache)
            result = await client.upload_timetable(write_export_files(tmp_path), login=CREDENTIALS)

        assert not result.skipped
        assert [upload["authorization"] for upload in self.api.uploads] == [
            "Bearer stale-token",
            "Bearer fresh-token",
        ]
        assert len(self.api.logins) == 1
        assert cache.read() == "fresh-token"

    @pytest.mark.asyncio
    async def test_second_rejection_raises(self, tmp_path):
        cache = TokenCache(tmp_path / "token.json")
        cache.write("stale-token")
        self.api.upload_responses = [(401, {}), (401, {})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), cache)
            with pytest.raises(AuthenticationError, match="after re-authentication"):
                await client.upload_timetable(write_export_files(tmp_path), login=CREDENTIALS)

        assert len(self.api.uploads) == 2
        assert len(self.api.logins) == 1

    @pytest.mark.asyncio
    async def test_retry_logs_in_even_when_cache_cannot_be_cleared(self, tmp_path, monkeypatch):
        cache = TokenCache(tmp_path / "token.json")
        cache.write("stale-token")
        monkeypatch.setattr(cache, "clear", lambda: None)
        self.api.upload_responses = [(401, {"message": "Unauthenticated."})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), cache)
            result = await client.upload_timetable(write_export_files(tmp_path), login=CREDENTIALS)

        assert not result.skipped
        assert len(self.api.logins) == 1
        assert [upload["authorization"] for upload in self.api.uploads] == [
            "Bearer stale-token",
            "Bearer fresh-token",
        ]

    @pytest.mark.asyncio
    async def test_rejected_token_without_credentials_skips(self, tmp_path):
        cache = TokenCache(tmp_path / "token.json")
        cache.write("stale-token")
        self.api.upload_responses = [(401, {})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), cache)
            result = await client.upload_timetable(write_export_files(tmp_path))

        assert result.skipped
        assert result.reason == "no token"
        assert len(self.api.uploads) == 1
        assert cache.read() is None

    @pytest.mark.asyncio
    async def test_rejected_explicit_token_is_not_retried(self, tmp_path):
        self.api.upload_responses = [(401, {})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")))
            with pytest.raises(AuthenticationError) as exc_info:
                await client.upload_timetable(write_export_files(tmp_path), api_token="explicit", login=CREDENTIALS)

        assert exc_info.value.status == 401
        assert len(self.api.uploads) == 1
        assert self.api.logins == []

    @pytest.mark.asyncio
    async def test_server_error_raises_upload_error(self, tmp_path):
        self.api.upload_responses = [(500, {"message": "boom"})]

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")))
            with pytest.raises(UploadError) as exc_info:
                await client.upload_timetable(write_export_files(tmp_path), api_token="explicit")

        assert exc_info.value.status == 500
        assert exc_info.value.body == {"message": "boom"}


class TestLogin:
    """Login endpoint handling."""

    def setup_method(self):
        self.api = FakeInnersyncAPI()

    @pytest.mark.asyncio
    async def test_incomplete_credentials_return_none(self, tmp_path):
        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), TokenCache(tmp_path / "token.json"))
            token = await client.login({"email": "admin@school.test"})

        assert token is None
        assert self.api.logins == []

    @pytest.mark.asyncio
    async def test_rejected_login_raises_with_status(self, tmp_path):
        self.api.login_status = 401

        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), TokenCache(tmp_path / "token.json"))
            with pytest.raises(LoginError) as exc_info:
                await client.login(CREDENTIALS)

        assert exc_info.value.status == 401
        assert not (tmp_path / "token.json").exists()

    @pytest.mark.asyncio
    async def test_successful_login_writes_cache(self, tmp_path):
        async with test_utils.TestServer(self.api.app()) as server:
            client = InnersyncClient(str(server.make_url("/")), TokenCache(tmp_path / "token.json"))
            token = await client.login(CREDENTIALS)

        assert token == "fresh-token"
        assert json.loads((tmp_path / "token.json").read_text()) == {"token": "fresh-token"}
        assert self.api.logins[0]["device_name"] == "office-pc"
