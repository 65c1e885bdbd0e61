from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine, inspect
from typer.testing import CliRunner

from comment_pipeline import cli
from comment_pipeline.config.settings import settings
from comment_pipeline.utils.db_session import get_async_engine, get_async_session_factory

runner = CliRunner()


@pytest.fixture
def sqlite_settings(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    get_async_engine.cache_clear()
    get_async_session_factory.cache_clear()
    yield db_path
    get_async_engine.cache_clear()
    get_async_session_factory.cache_clear()


def test_init_db_creates_tables(sqlite_settings, mocker):
    mocker.patch("comment_pipeline.cli.setup_logging")

    result = runner.invoke(cli.app, ["init-db"])

    assert result.exit_code == 0, result.output
    engine = create_engine(f"sqlite:///{sqlite_settings}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"stored_items", "bus_deliveries", "dead_letter_events"} <= tables


def test_worker_command_starts_exporter_and_worker(mocker):
    mocker.patch("comment_pipeline.cli.setup_logging")
    exporter_cls = mocker.patch("comment_pipeline.cli.PrometheusExporter")
    worker = MagicMock()
    worker.run_forever = AsyncMock(return_value=None)
    mocker.patch("comment_pipeline.cli.build_processor_worker", return_value=worker)

    result = runner.invoke(cli.app, ["worker", "--metrics-port", "9999"])

    assert result.exit_code == 0, result.output
    exporter_cls.assert_called_once_with(port=9999)
    exporter_cls.return_value.start_server.assert_called_once()
    worker.run_forever.assert_awaited_once()


def test_serve_command_runs_uvicorn(mocker):
    uvicorn_run = mocker.patch("comment_pipeline.cli.uvicorn.run")

    result = runner.invoke(cli.app, ["serve", "--port", "8123"])

    assert result.exit_code == 0, result.output
    uvicorn_run.assert_called_once()
    assert uvicorn_run.call_args.args[0] == "comment_pipeline.api.main:app"
    assert uvicorn_run.call_args.kwargs["port"] == 8123
