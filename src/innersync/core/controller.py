"""Settings-backed controller owning one sync orchestrator at a time."""

from typing import Any, Callable, Dict, List, Optional, Tuple

from .events import EventStream
from .history import HistoryEntry
from .orchestrator import RunResult, RunState, SyncOrchestrator, SyncStatus
from ..api_clients import AuthenticationError, InnersyncClient, LoginError
from ..auth import TokenCache
from ..config import ResolvedConfig, SettingsStore, SyncSettings
from ..config.schema import default_device_name
from ..utils.logging import get_logger


OrchestratorFactory = Callable[[ResolvedConfig], SyncOrchestrator]
ClientFactory = Callable[[ResolvedConfig], InnersyncClient]

LOGIN_ERROR_MESSAGES = {
    401: "Invalid email or password.",
    422: "Login details were rejected. Check the email address and password.",
}


def default_client_factory(config: ResolvedConfig) -> InnersyncClient:
    return InnersyncClient(config.api_base_url, TokenCache(config.token_cache_path))


class SyncController:
    """Glue between a :class:`SettingsStore` and the running orchestrator.

    Settings changes, login and logout restart the orchestrator with a freshly
    resolved configuration. Status and history events of whichever
    orchestrator is current are re-published on the controller's own streams.
    """

    def __init__(
        self,
        store: SettingsStore,
        orchestrator_factory: Optional[OrchestratorFactory] = None,
        client_factory: Optional[ClientFactory] = None
    ):
        self.store = store
        self.orchestrator_factory = orchestrator_factory or SyncOrchestrator
        self.client_factory = client_factory or default_client_factory
        self.logger = get_logger(self.__class__.__name__)

        self.status_events: EventStream[SyncStatus] = EventStream("status")
        self.history_events: EventStream[List[HistoryEntry]] = EventStream("history")

        self.service: Optional[SyncOrchestrator] = None
        self._latest_status: Optional[SyncStatus] = None
        self._active = False
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def settings(self) -> SyncSettings:
        return self.store.get()

    async def init(self) -> SyncStatus:
        """Load settings and start the orchestrator."""
        settings = self.store.load()
        self._active = True
        await self._start_service(settings)
        return self.get_status()

    async def shutdown(self) -> None:
        self._active = False
        await self._stop_service()

    def get_status(self) -> Optional[SyncStatus]:
        if self.service is not None:
            return self.service.get_status()
        return self._latest_status

    def get_history(self) -> List[HistoryEntry]:
        status = self.get_status()
        return list(status.history) if status else []

    async def pause(self) -> Optional[SyncStatus]:
        if self.service is not None:
            await self.service.pause()
        return self.get_status()

    async def resume(self) -> Optional[SyncStatus]:
        if self.service is not None:
            await self.service.resume()
        return self.get_status()

    async def trigger(self, reason: str = "manual trigger") -> Optional[RunResult]:
        if self.service is None:
            self.logger.warning("Sync service is not running; trigger ignored")
            return None
        return await self.service.trigger_sync(reason)

    async def update_settings(self, patch: Dict[str, Any]) -> SyncSettings:
        """Persist a partial settings update; restarts the orchestrator once initialized."""
        patch = dict(patch)
        patch.pop("api_base_url", None)
        # An empty watch list from a form means "unchanged"
        if "watch_files" in patch and not patch["watch_files"]:
            patch.pop("watch_files")

        settings = self.store.update(patch)
        self.logger.info("Settings updated", keys=sorted(patch))
        if self._active:
            await self._start_service(settings)
        return settings

    async def login(
        self,
        email: str,
        password: str,
        device_name: Optional[str] = None,
        remember: bool = False
    ) -> Tuple[str, SyncSettings]:
        """Log in, store the issued token and restart the orchestrator.

        Raises:
            AuthenticationError: If input is missing or the login is rejected
        """
        email = (email or "").strip()
        password = password or ""
        if not email or not password:
            raise AuthenticationError("Email and password are required.")

        current = self.store.get()
        device = (device_name or "").strip() or current.login.device_name or default_device_name()

        config = ResolvedConfig.from_settings(current)
        client = self.client_factory(config)
        credentials = {
            "email": email,
            "password": password,
            "device_name": device,
            "replace_existing": True,
        }

        try:
            token = await client.login(credentials)
        except LoginError as e:
            message = LOGIN_ERROR_MESSAGES.get(e.status)
            if message:
                raise AuthenticationError(message, status=e.status)
            raise

        if not token:
            raise AuthenticationError("Login failed: the server did not return an access token.")

        settings = await self.update_settings({
            "api_token": token,
            "login": {
                **credentials,
                "password": password if remember else "",
                "remember": remember,
            },
        })
        self.logger.info("Logged in", email=email, device_name=device)
        return token, settings

    async def logout(self) -> SyncSettings:
        """Stop syncing, forget the token and publish a signed-out status."""
        current = self.store.get()
        await self._stop_service()

        TokenCache(ResolvedConfig.from_settings(current).token_cache_path).clear()

        settings = self.store.update({
            "api_token": None,
            "login": {
                **current.login.model_dump(),
                "password": "",
                "remember": False,
            },
        })

        config = ResolvedConfig.from_settings(settings)
        previous = self._latest_status
        self._latest_status = SyncStatus(
            state=RunState.SIGNED_OUT,
            paused=True,
            running=False,
            last_run=previous.last_run if previous else None,
            last_result=previous.last_result if previous else None,
            history=previous.history if previous else (),
            watch_files=tuple(str(path) for path in config.watch_files)
        )
        self.logger.info("Logged out")
        self.status_events.emit(self._latest_status)
        self.history_events.emit(list(self._latest_status.history))
        return settings

    async def _start_service(self, settings: SyncSettings) -> None:
        await self._stop_service()

        config = ResolvedConfig.from_settings(settings)
        service = self.orchestrator_factory(config)
        self._unsubscribers = [
            service.status_events.subscribe(self._on_status),
            service.history_events.subscribe(self.history_events.emit),
        ]
        self.service = service
        self.logger.info("Starting sync service", watch_files=[str(p) for p in config.watch_files])
        await service.start()
        self._latest_status = service.get_status()

    async def _stop_service(self) -> None:
        if self.service is None:
            return
        service, self.service = self.service, None
        await service.stop()
        self._latest_status = service.get_status()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_status(self, status: SyncStatus) -> None:
        self._latest_status = status
        self.status_events.emit(status)
