"""
NIDS Watch Daemon.

Main entry point that hosts all components:
- Event Store (SQLite)
- Alert Ingestor and Rule Audit Engine
- Sensor Supervisor (external packet sniffer)
- REST API (optional)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any

from nidswatch import __version__
from nidswatch.config import NidsWatchConfig, load_config, validate_config
from nidswatch.ingest.ingestor import AlertIngestor
from nidswatch.rules.audit import RuleAuditEngine
from nidswatch.sensor.process import SensorFactory, create_sensor
from nidswatch.sensor.supervisor import SensorSupervisor
from nidswatch.store.database import EventStore

logger = logging.getLogger("nidswatch")


def setup_logging(level_name: str, log_file: str | None = None) -> None:
    """Configure root logging for the daemon and CLI."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


class NidsWatchDaemon:
    """
    Hosts the ingestion core for one process lifetime.

    Components are created lazily; start() brings up the store, the sensor
    supervisor and the API server, stop() tears them down in reverse order.
    """

    def __init__(
        self,
        config: NidsWatchConfig,
        sensor_factory: SensorFactory | None = None,
    ) -> None:
        """
        Initialize daemon with configuration.

        Args:
            config: Validated configuration object
            sensor_factory: Override for the sensor process factory
        """
        self.config = config
        self._sensor_factory = sensor_factory

        self._store: EventStore | None = None
        self._ingestor: AlertIngestor | None = None
        self._rules: RuleAuditEngine | None = None
        self._supervisor: SensorSupervisor | None = None
        self._api_server: Any = None
        self._api_task: asyncio.Task | None = None

        self.running = False
        self._shutdown_event = asyncio.Event()
        self._start_time: datetime | None = None

    @property
    def store(self) -> EventStore:
        """Get or initialize the event store."""
        if self._store is None:
            self._store = EventStore(
                self.config.database.path,
                wal_mode=self.config.database.wal_mode,
                busy_timeout=self.config.database.busy_timeout,
            )
        return self._store

    @property
    def ingestor(self) -> AlertIngestor:
        """Get or initialize the alert ingestor."""
        if self._ingestor is None:
            self._ingestor = AlertIngestor(self.store)
        return self._ingestor

    @property
    def rules(self) -> RuleAuditEngine:
        """Get or initialize the rule audit engine."""
        if self._rules is None:
            self._rules = RuleAuditEngine(self.store)
        return self._rules

    @property
    def supervisor(self) -> SensorSupervisor:
        """Get or initialize the sensor supervisor."""
        if self._supervisor is None:
            factory = self._sensor_factory or create_sensor(self.config.sensor)
            self._supervisor = SensorSupervisor(
                factory, self.ingestor, config=self.config.sensor
            )
        return self._supervisor

    async def start(self) -> None:
        """Start the daemon and all services."""
        logger.info("Starting NIDS Watch daemon v%s", __version__)
        self.running = True
        self._start_time = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        logger.info("Opening event store: %s", self.config.database.path)
        _ = self.store

        if self.config.api.enabled:
            await self._start_api_server()

        if self.config.sensor.enabled:
            self.supervisor.start()
        else:
            logger.info("Sensor disabled by configuration")

        logger.info("Daemon components initialized")

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        logger.info("Stopping NIDS Watch daemon...")
        self.running = False
        self._shutdown_event.set()

        if self._supervisor is not None:
            await self._supervisor.stop()

        if self._api_server is not None:
            self._api_server.should_exit = True
            if self._api_task is not None:
                try:
                    await asyncio.wait_for(
                        self._api_task, timeout=self.config.sensor.shutdown_grace
                    )
                except asyncio.TimeoutError:
                    self._api_task.cancel()
            self._api_server = None
            self._api_task = None

        if self._store is not None:
            self._store.close()

        logger.info("Daemon stopped")

    async def run(self) -> None:
        """Run until a shutdown signal arrives."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("Daemon loop cancelled")
        finally:
            await self.stop()

    async def _start_api_server(self) -> None:
        """Start the FastAPI server inside this event loop."""
        import uvicorn

        from nidswatch.api import configure_services, create_app

        logger.info(
            "Starting API server on %s:%s", self.config.api.host, self.config.api.port
        )

        app = create_app(
            debug=self.config.daemon.log_level == "debug",
            cors_origins=self.config.api.cors_origins,
        )
        configure_services(
            store=self.store,
            ingestor=self.ingestor,
            rules=self.rules,
            supervisor=self.supervisor if self.config.sensor.enabled else None,
        )

        server_config = uvicorn.Config(
            app=app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.daemon.log_level,
            access_log=False,
        )
        self._api_server = uvicorn.Server(server_config)
        # Signals are handled by the daemon, not uvicorn
        self._api_server.install_signal_handlers = lambda: None
        self._api_task = asyncio.create_task(self._api_server.serve())

    def handle_signal(self, signum: int) -> None:
        """Handle termination signals."""
        sig_name = signal.Signals(signum).name
        logger.info("Received signal %s, initiating shutdown", sig_name)
        self.running = False
        self._shutdown_event.set()

    def get_statistics(self) -> dict[str, Any]:
        """Get daemon statistics."""
        uptime = None
        if self._start_time:
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()

        return {
            "running": self.running,
            "uptime_seconds": uptime,
            "sensor": self._supervisor.get_statistics() if self._supervisor else None,
        }


async def run_daemon(config: NidsWatchConfig) -> int:
    """Run the daemon with the given configuration."""
    daemon = NidsWatchDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: daemon.handle_signal(s))

    try:
        await daemon.run()
    except Exception as e:
        logger.exception("Daemon crashed: %s", e)
        return 1

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the daemon."""
    parser = argparse.ArgumentParser(
        prog="nidswatch-daemon",
        description="NIDS Watch daemon process",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--no-sensor",
        action="store_true",
        help="Do not launch the sensor process",
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        config.daemon.log_level = "debug"
    if args.no_sensor:
        config.sensor.enabled = False

    errors = validate_config(config)
    if errors:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    setup_logging(config.daemon.log_level, config.daemon.log_file)
    return asyncio.run(run_daemon(config))


if __name__ == "__main__":
    sys.exit(main())
