"""Main application entry point."""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import List, Optional

from aiohttp import web, web_runner

from .api_clients import AuthenticationError
from .config import (
    ConfigLoader,
    ConfigurationError,
    ResolvedConfig,
    SettingsStore,
    SyncSettings,
    load_config_from_env
)
from .config.settings import get_settings
from .core import HistoryEntry, SyncController, SyncOrchestrator, SyncStatus
from .exporter import ExportError, generate_timetable
from .utils.logging import setup_logging, get_logger


DEFAULT_DATA_DIR = "./data"


class SyncApp:
    """Long-running sync service with an optional local status server."""

    def __init__(
        self,
        config: ResolvedConfig,
        status_port: Optional[int] = None,
        orchestrator: Optional[SyncOrchestrator] = None
    ):
        """Initialize the application."""
        self.settings = get_settings()
        self.config = config
        self.status_port = status_port
        self.orchestrator = orchestrator or SyncOrchestrator(config)
        self.logger = get_logger("SyncApp")
        self.running = False
        self.started_at: Optional[datetime] = None
        self.web_app: Optional[web.Application] = None
        self.web_runner: Optional[web_runner.AppRunner] = None
        self._stop_event = asyncio.Event()
        self._unsubscribers = []

    async def startup(self):
        """Application startup."""
        self.logger.info(
            "Starting sync service",
            version=self.settings.version,
            environment=self.settings.environment,
            tfx_file=str(self.config.tfx_file),
            output_dir=str(self.config.output_dir)
        )

        self._unsubscribers = [
            self.orchestrator.status_events.subscribe(self._log_status),
            self.orchestrator.history_events.subscribe(self._log_history),
        ]

        if self.status_port is not None:
            await self._setup_web_server()

        self.running = True
        self.started_at = datetime.now(timezone.utc)
        await self.orchestrator.start()
        self.logger.info("Sync service started")

    async def shutdown(self):
        """Application shutdown."""
        self.logger.info("Shutting down sync service")
        self.running = False

        await self.orchestrator.stop()
        await self._stop_web_server()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        self.logger.info("Sync service stopped")

    def request_stop(self):
        self._stop_event.set()

    async def run(self):
        """Run until a stop is requested."""
        await self.startup()

        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    def create_web_app(self) -> web.Application:
        """Build the status server application."""
        app = web.Application()

        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/status', self._status_handler)
        app.router.add_get('/history', self._history_handler)
        app.router.add_post('/sync', self._sync_handler)
        app.router.add_post('/pause', self._pause_handler)
        app.router.add_post('/resume', self._resume_handler)

        return app

    async def _setup_web_server(self):
        """Set up web server for health checks and status."""
        self.web_app = self.create_web_app()

        self.web_runner = web_runner.AppRunner(self.web_app)
        await self.web_runner.setup()

        site = web_runner.TCPSite(self.web_runner, '127.0.0.1', self.status_port)
        await site.start()

        self.logger.info(f"Status server started on http://127.0.0.1:{self.status_port}")

    async def _stop_web_server(self):
        """Stop web server."""
        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            self.logger.info("Status server stopped")

    def _log_status(self, status: SyncStatus):
        self.logger.info(
            "Status changed",
            state=status.state.value,
            paused=status.paused,
            running=status.running
        )

    def _log_history(self, entries: List[HistoryEntry]):
        if entries:
            latest = entries[-1]
            self.logger.debug("History updated", entries=len(entries), latest_status=latest.status)

    async def _health_handler(self, request):
        """Health check endpoint."""
        uptime = 0.0
        if self.started_at:
            uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds()

        health_data = {
            "status": "healthy" if self.running else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "environment": self.settings.environment,
            "uptime_seconds": round(uptime, 3)
        }

        status_code = 200 if self.running else 503
        return web.json_response(health_data, status=status_code)

    async def _status_handler(self, request):
        """Detailed status endpoint."""
        return web.json_response(self.orchestrator.get_status().to_dict())

    async def _history_handler(self, request):
        return web.json_response(self.orchestrator.history.to_list())

    async def _sync_handler(self, request):
        """Run a manual sync; a run in flight queues it instead."""
        result = await self.orchestrator.trigger_sync()
        if result is None:
            status = self.orchestrator.get_status()
            return web.json_response(
                {"accepted": not status.paused, "queued": status.running, "status": status.to_dict()},
                status=202
            )
        return web.json_response({"accepted": True, "result": result.to_dict()})

    async def _pause_handler(self, request):
        await self.orchestrator.pause()
        return web.json_response(self.orchestrator.get_status().to_dict())

    async def _resume_handler(self, request):
        await self.orchestrator.resume()
        return web.json_response(self.orchestrator.get_status().to_dict())


def setup_signal_handlers(app: SyncApp):
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        app.logger.info(f"Received signal {signum}")
        app.request_stop()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still stops the service
            pass


def load_sync_settings(config_file: Optional[str]) -> SyncSettings:
    if config_file:
        return ConfigLoader().load_from_file(config_file)
    return load_config_from_env()


async def run_service(config_file: Optional[str], status_port: Optional[int]):
    settings = get_settings()
    sync_settings = load_sync_settings(config_file or settings.config_file)
    config = ResolvedConfig.from_settings(sync_settings)

    app = SyncApp(config, status_port=status_port if status_port is not None else settings.status_port)
    setup_signal_handlers(app)
    await app.run()


async def run_generate(args) -> int:
    logger = get_logger("generate")
    sync_settings = load_sync_settings(args.config)

    overrides = {}
    if args.base_dir:
        overrides["base_dir"] = args.base_dir
    if args.tfx:
        overrides["tfx_file"] = args.tfx
    if args.output:
        overrides["output_dir"] = args.output
    config = ResolvedConfig.from_settings(sync_settings.model_copy(update=overrides))

    try:
        result = await generate_timetable(config.tfx_file, config.output_dir, base_dir=config.base_dir)
    except ExportError as e:
        logger.error("Export failed", error=str(e))
        return 1

    for path in result.upload_files().values():
        print(path)
    return 0


async def run_login(args) -> int:
    logger = get_logger("login")
    controller = SyncController(SettingsStore(args.data_dir))
    controller.store.load()

    try:
        await controller.login(
            args.email,
            args.password,
            device_name=args.device_name,
            remember=args.remember
        )
    except AuthenticationError as e:
        logger.error("Login failed", error=str(e))
        return 1

    logger.info("Login succeeded", settings_file=str(controller.store.file_path))
    return 0


async def run_logout(args) -> int:
    controller = SyncController(SettingsStore(args.data_dir))
    controller.store.load()
    await controller.logout()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="innersync",
        description="Watch timetable files and sync exports to Innersync"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the sync service")
    run_parser.add_argument("--config", help="Sync settings file (JSON or YAML)")
    run_parser.add_argument("--status-port", type=int, help="Port for the local status server")

    generate_parser = subparsers.add_parser("generate", help="Export the timetable without uploading")
    generate_parser.add_argument("--config", help="Sync settings file (JSON or YAML)")
    generate_parser.add_argument("--base-dir", help="Directory relative paths resolve against")
    generate_parser.add_argument("--tfx", help="Timetable document to export")
    generate_parser.add_argument("--output", help="Output directory for the export files")

    login_parser = subparsers.add_parser("login", help="Log in and store an API token")
    login_parser.add_argument("--email", required=True)
    login_parser.add_argument("--password", required=True)
    login_parser.add_argument("--device-name")
    login_parser.add_argument("--remember", action="store_true", help="Keep the password in the settings file")
    login_parser.add_argument("--data-dir", default=DEFAULT_DATA_DIR, help="Directory holding settings.json")

    logout_parser = subparsers.add_parser("logout", help="Forget the stored API token")
    logout_parser.add_argument("--data-dir", default=DEFAULT_DATA_DIR, help="Directory holding settings.json")

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Set up logging first
    setup_logging()

    logger = get_logger("main")
    logger.info("Innersync command", command=args.command)

    if args.command == "run":
        await run_service(args.config, args.status_port)
        return 0
    if args.command == "generate":
        return await run_generate(args)
    if args.command == "login":
        return await run_login(args)
    return await run_logout(args)


def cli():
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        print(f"Application failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
