"""Main entry point for Ticketforge.

Wires configuration, logging, the ticket database, the scheduler, the
stall watchdog and the agent routers together, and exposes them through a
small Typer CLI.

Usage:
    ticketforge run --config ticketforge.toml
    ticketforge status
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from ticketforge.agents.answer import AnswerRouter
from ticketforge.agents.planning import PlanningRouter
from ticketforge.agents.verification import VerificationRouter
from ticketforge.config import TicketforgeConfig, load_config
from ticketforge.database.connection import create_schema, get_engine, get_session_factory
from ticketforge.llm.client import LLMClient
from ticketforge.logging import get_logger, setup_logging
from ticketforge.orchestrator.scheduler import (
    QueueStatus,
    Scheduler,
    initialize_orchestrator,
    shutdown_orchestrator,
)
from ticketforge.orchestrator.watchdog import StallWatchdog
from ticketforge.store.sql import SqlTicketStore

logger = get_logger(__name__)

app = typer.Typer(
    name="ticketforge",
    help="Ticketforge: ticket task-queue scheduler for AI agents",
    no_args_is_help=True,
)

console = Console()


class AppContext:
    """Running Ticketforge process.

    Attributes:
        config: Loaded Ticketforge configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
        store: Ticket store over the database
        llm: Language model client shared by the routers
        scheduler: Process-wide scheduler, set by :meth:`start`
        watchdog: Stall watchdog, set by :meth:`start`
    """

    def __init__(self, config: TicketforgeConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self.store = SqlTicketStore(self.session_factory)
        self.llm = LLMClient(config.llm)

        self.scheduler: Scheduler | None = None
        self.watchdog: StallWatchdog | None = None
        self.answer: AnswerRouter | None = None
        self.planning: PlanningRouter | None = None
        self.verifier: VerificationRouter | None = None

        self._exit_stack = AsyncExitStack()

    async def start(self, watchdog: bool = True) -> None:
        """Create the schema, load the queue and start background work.

        Args:
            watchdog: Start the stall watchdog (default: True)
        """
        await create_schema(self.engine)
        await self._exit_stack.enter_async_context(self.llm)

        orchestrator = self.config.orchestrator
        self.scheduler = await initialize_orchestrator(self.store, orchestrator)

        self.answer = AnswerRouter(self.llm, self.scheduler)
        self.planning = PlanningRouter(self.llm)
        self.verifier = VerificationRouter(self.llm, self.scheduler)

        if watchdog:
            self.watchdog = StallWatchdog(self.scheduler, orchestrator.watchdog_interval_seconds)
            await self.watchdog.start()

        logger.info(
            "ticketforge_started",
            database=self.engine.url.render_as_string(hide_password=True),
            auto_process_tickets=orchestrator.auto_process_tickets,
            watchdog=watchdog,
        )

    async def stop(self) -> None:
        """Stop background work and release the database and LLM client."""
        if self.watchdog is not None and self.watchdog.is_running:
            await self.watchdog.stop()
        await shutdown_orchestrator()
        await self._exit_stack.aclose()
        await self.engine.dispose()
        self.scheduler = None
        logger.info("ticketforge_stopped")


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the running application context.

    Raises:
        RuntimeError: If the application has not been started
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call start_application first.")
    return _app_context


async def start_application(
    config_path: Path | None = None,
    watchdog: bool = True,
) -> AppContext:
    """Load configuration, configure logging and start the application.

    Args:
        config_path: Optional TOML file; the default search path otherwise
        watchdog: Start the stall watchdog (default: True)

    Returns:
        The started AppContext, also available from get_app_context()
    """
    global _app_context
    if _app_context is not None:
        logger.warning("application_already_started")
        return _app_context

    config = load_config(config_path)
    setup_logging(config.logging)

    context = AppContext(config)
    try:
        await context.start(watchdog=watchdog)
    except Exception:
        await context.stop()
        raise

    _app_context = context
    return context


async def stop_application() -> None:
    """Stop the running application, if any."""
    global _app_context
    if _app_context is None:
        return
    context, _app_context = _app_context, None
    await context.stop()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file (TOML format)",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
]


async def _serve(config_path: Path | None) -> None:
    await start_application(config_path)
    try:
        await asyncio.Event().wait()
    finally:
        await stop_application()


async def _queue_status(config_path: Path | None) -> QueueStatus:
    context = await start_application(config_path, watchdog=False)
    try:
        assert context.scheduler is not None
        return await context.scheduler.get_queue_status()
    finally:
        await stop_application()


def _exit_on_config_error(e: Exception) -> typer.Exit:
    console.print(f"[red]Error loading configuration:[/red] {e}")
    return typer.Exit(code=1)


@app.command()
def run(config_path: ConfigOption = None) -> None:
    """Run the scheduler and stall watchdog until interrupted."""
    console.print("[bold cyan]Starting Ticketforge[/bold cyan]")
    try:
        asyncio.run(_serve(config_path))
    except (FileNotFoundError, ValueError) as e:
        raise _exit_on_config_error(e)
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


@app.command()
def status(config_path: ConfigOption = None) -> None:
    """Print queue counts read from the ticket database."""
    try:
        queue = asyncio.run(_queue_status(config_path))
    except (FileNotFoundError, ValueError) as e:
        raise _exit_on_config_error(e)

    table = Table(title="Ticketforge queue")
    table.add_column("Pending", justify="right")
    table.add_column("Picked", justify="right")
    table.add_column("Blocked P1", justify="right")
    table.add_column("Last picked")
    table.add_row(
        str(queue.queue_count),
        str(queue.picked_count),
        str(queue.blocked_p1_count),
        queue.last_picked_title or "-",
    )
    console.print(table)


if __name__ == "__main__":
    app()
