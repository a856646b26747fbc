"""
Process runner: uvicorn serving the control plane, plus the fail-stop guard.
"""

import asyncio
from typing import Any, Optional

import structlog
import uvicorn

from .api import create_app
from .config import Settings
from .errors import ConfigError
from .supervisor import RelayerSupervisor

logger = structlog.get_logger()


class FailStopGuard:
    """
    Event loop exception handler.

    An unhandled exception anywhere in the process stops the supervisor and
    makes the server exit with a non-zero code, instead of serving on with a
    dead relayer.
    """

    def __init__(self, supervisor: RelayerSupervisor, server: Optional[uvicorn.Server] = None):
        self.supervisor = supervisor
        self.server = server
        self.exit_code = 0
        self._stop_task: Optional[asyncio.Task] = None

    @property
    def tripped(self) -> bool:
        return self.exit_code != 0

    def __call__(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            # Resource warnings (unclosed sessions and the like) are not fatal
            logger.warning("event_loop_warning", message=context.get("message"))
            return

        logger.error(
            "unhandled_exception",
            message=context.get("message"),
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        if self.tripped:
            return

        self.exit_code = 1
        self._stop_task = loop.create_task(self.supervisor.stop())
        if self.server is not None:
            self.server.should_exit = True


async def serve(settings: Settings) -> int:
    """
    Run the relayer and its HTTP control plane until shutdown.

    Returns the process exit code.
    """
    try:
        settings.require_relayer_config()
    except ConfigError as e:
        logger.error("config_invalid", error=str(e))
        return 1

    supervisor = RelayerSupervisor(settings)
    app = create_app(settings, supervisor)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.host, port=settings.port, log_config=None)
    )

    guard = FailStopGuard(supervisor, server)
    asyncio.get_running_loop().set_exception_handler(guard)

    await server.serve()

    if not server.started:
        logger.error("server_start_failed")
        return 1
    if guard.tripped:
        logger.error("fail_stop_triggered")
    return guard.exit_code
