"""
Stop Motion Main Controller

Builds a session from configuration, starts the live pipeline and the
REST API, and keeps the process alive until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from datetime import datetime

from .session import StopMotionSession, create_session_from_config

logger = logging.getLogger(__name__)


class StopMotionApp:
    """Process-level owner of the session and background tasks."""

    def __init__(self):
        self._running = False
        self._session: StopMotionSession | None = None
        self._background_tasks: list[asyncio.Task] = []
        self._started_at: datetime | None = None

        logger.info("StopMotionApp initialized")

    @property
    def session(self) -> StopMotionSession | None:
        return self._session

    async def start(self) -> None:
        """Start the capture session and serve until a shutdown signal."""
        logger.info("=== Starting stopmo ===")

        from .config import api_config, ensure_runtime_dirs, setup_logging

        setup_logging()
        ensure_runtime_dirs()

        self._session = create_session_from_config()
        self._session.start()
        self._setup_signal_handlers()

        self._running = True
        self._started_at = datetime.now()

        if api_config.enabled:
            from .api.server import start_server

            task = asyncio.create_task(
                start_server(host=api_config.host, port=api_config.port, session=self._session),
                name="api_server",
            )
            self._background_tasks.append(task)
            logger.info(f"API server task started on {api_config.host}:{api_config.port}")
        else:
            logger.warning("API disabled: the session runs headless")

        logger.info("=== stopmo running ===")

        try:
            while self._running:
                await asyncio.sleep(1)
                for task in self._background_tasks:
                    if task.done() and not task.cancelled() and task.exception():
                        logger.error(f"Background task {task.get_name()} failed: {task.exception()}")
                        self._running = False
        except asyncio.CancelledError:
            logger.info("Main loop cancelled")

        await self._shutdown()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Signal {signum} received, initiating shutdown...")
            self._running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def _shutdown(self) -> None:
        logger.info("Initiating shutdown...")

        if self._background_tasks:
            for task in self._background_tasks:
                if not task.done():
                    task.cancel()
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background_tasks, return_exceptions=True),
                    timeout=5.0,
                )
            except asyncio.TimeoutError:
                logger.warning("Background tasks did not cancel within 5s")
            self._background_tasks.clear()

        if self._session:
            self._session.cleanup()

        logger.info("Shutdown complete")

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "session": self._session.get_status() if self._session else None,
        }


# ==================== Entry Point ====================


async def app() -> None:
    """Main application entry point."""
    controller = StopMotionApp()
    await controller.start()


def main() -> None:
    """CLI entry point."""
    from . import __version__

    print(f"=== stopmo v{__version__} ===")
    print("Stop motion capture with live chroma key")
    print()

    try:
        asyncio.run(app())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
