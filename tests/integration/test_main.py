"""Integration tests for application startup, shutdown and the CLI."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from typer.testing import CliRunner

from ticketforge import main
from ticketforge.agents.handlers import handle_get_next_task
from ticketforge.main import app, get_app_context, start_application, stop_application
from ticketforge.orchestrator.scheduler import (
    SchedulerNotInitializedError,
    get_orchestrator,
    reset_orchestrator_for_tests,
)
from ticketforge.store.base import TicketCreate


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Run from an empty directory with no user config or TICKETFORGE_ env.

    Logging setup is replaced by a mock so the global structlog
    configuration is left alone for other tests.
    """
    for key in list(os.environ):
        if key.startswith("TICKETFORGE_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)

    setup_logging = MagicMock()
    monkeypatch.setattr(main, "setup_logging", setup_logging)
    return setup_logging


@pytest_asyncio.fixture
async def stopped_after() -> AsyncGenerator[None, None]:
    """Stop the application and drop the scheduler after the test."""
    yield
    await stop_application()
    await reset_orchestrator_for_tests()


def write_config(tmp_path: Path, db_path: Path, extra: str = "") -> Path:
    config_file = tmp_path / "ticketforge.toml"
    config_file.write_text(
        f'[database]\nurl = "sqlite+aiosqlite:///{db_path}"\n\n'
        "[orchestrator]\nwatchdog_interval_seconds = 5\n"
        f"{extra}"
    )
    return config_file


# ===========================================================================
# Startup and shutdown
# ===========================================================================


@pytest.mark.asyncio
@pytest.mark.usefixtures("stopped_after")
async def test_start_application_wires_components(
    tmp_path: Path, isolated_env: MagicMock
) -> None:
    """Test that startup builds the store, scheduler and watchdog from config."""
    db_path = tmp_path / "data" / "tickets.db"
    config_file = write_config(tmp_path, db_path)

    context = await start_application(config_file)

    assert get_app_context() is context
    assert get_orchestrator() is context.scheduler
    isolated_env.assert_called_once_with(context.config.logging)
    assert db_path.exists()
    assert context.watchdog is not None
    assert context.watchdog.is_running
    assert context.watchdog.check_interval == 5
    assert context.answer is not None
    assert context.verifier is not None

    created = await context.store.create_ticket(TicketCreate(title="Wire up startup"))
    await context.scheduler.wait_for_pending_refreshes()
    response = await handle_get_next_task(context.scheduler)

    assert response.task is not None
    assert response.task["id"] == created.id


@pytest.mark.asyncio
@pytest.mark.usefixtures("stopped_after")
async def test_stop_application_releases_everything(tmp_path: Path) -> None:
    """Test that shutdown stops the watchdog and discards the scheduler."""
    config_file = write_config(tmp_path, tmp_path / "tickets.db")
    context = await start_application(config_file)
    watchdog = context.watchdog

    await stop_application()

    assert watchdog is not None
    assert not watchdog.is_running
    with pytest.raises(SchedulerNotInitializedError):
        get_orchestrator()
    with pytest.raises(RuntimeError, match="not initialized"):
        get_app_context()

    await stop_application()


@pytest.mark.asyncio
@pytest.mark.usefixtures("stopped_after")
async def test_restart_reloads_queue_from_database(tmp_path: Path) -> None:
    """Test that tickets survive a restart and are queued again."""
    config_file = write_config(tmp_path, tmp_path / "tickets.db")

    first = await start_application(config_file)
    created = await first.store.create_ticket(TicketCreate(title="Persisted task"))
    await stop_application()

    second = await start_application(config_file)

    assert second is not first
    assert [task.id for task in second.scheduler.pending_tasks] == [created.id]


@pytest.mark.asyncio
@pytest.mark.usefixtures("stopped_after")
async def test_database_url_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test startup without a config file, configured by environment only."""
    db_path = tmp_path / "env" / "tickets.db"
    monkeypatch.setenv("TICKETFORGE_DATABASE__URL", f"sqlite+aiosqlite:///{db_path}")

    context = await start_application(watchdog=False)

    assert context.watchdog is None
    assert context.engine.url.database == str(db_path)
    assert db_path.exists()


@pytest.mark.asyncio
async def test_missing_config_file_leaves_nothing_running(tmp_path: Path) -> None:
    """Test that a bad config path fails before anything starts."""
    with pytest.raises(FileNotFoundError):
        await start_application(tmp_path / "missing.toml")

    with pytest.raises(RuntimeError):
        get_app_context()


@pytest.mark.asyncio
@pytest.mark.usefixtures("stopped_after")
async def test_serve_stops_on_cancel(tmp_path: Path) -> None:
    """Test that the run loop shuts the application down when cancelled."""
    config_file = write_config(tmp_path, tmp_path / "tickets.db")

    serving = asyncio.create_task(main._serve(config_file))
    for _ in range(100):
        await asyncio.sleep(0.01)
        if main._app_context is not None:
            break
    watchdog = get_app_context().watchdog

    serving.cancel()
    with pytest.raises(asyncio.CancelledError):
        await serving

    assert watchdog is not None
    assert not watchdog.is_running
    assert main._app_context is None


# ===========================================================================
# CLI
# ===========================================================================


def test_status_command(tmp_path: Path) -> None:
    """Test that status prints the queue table for an empty database."""
    config_file = write_config(tmp_path, tmp_path / "tickets.db")

    result = CliRunner().invoke(app, ["status", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "Ticketforge queue" in result.output
    assert "Pending" in result.output
    assert main._app_context is None


def test_status_command_invalid_config(tmp_path: Path) -> None:
    """Test that an invalid config exits with code 1."""
    config_file = write_config(
        tmp_path, tmp_path / "tickets.db", extra='\n[logging]\nlevel = "LOUD"\n'
    )

    result = CliRunner().invoke(app, ["status", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "Error loading configuration" in result.output
