from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import pytest
from typer.testing import CliRunner

import eventsink.main as cli
from eventsink.domain.schema import Schema
from eventsink.engine.validator import TypedRow
from eventsink.pipeline import IngestionPipeline

from tests.conftest import EVENTS_SCHEMA_YAML, EXAMPLE_SCHEMA_PATH, SECRET

runner = CliRunner()


class _RecordingExecutor:
    def __init__(self) -> None:
        self.rows: List[TypedRow] = []

    def insert(self, row: TypedRow) -> None:
        self.rows.append(row)


@pytest.fixture()
def schema_file(tmp_path: Path) -> Path:
    path = tmp_path / "schema.yaml"
    path.write_text(EVENTS_SCHEMA_YAML, encoding="utf-8")
    return path


@pytest.fixture()
def executor(monkeypatch: pytest.MonkeyPatch) -> _RecordingExecutor:
    """Replace startup (reconcile + pool) with an in-memory pipeline."""
    recorder = _RecordingExecutor()

    def _bootstrap(settings: Any, schema: Schema) -> IngestionPipeline:
        return IngestionPipeline(schema, recorder)  # type: ignore[arg-type]

    monkeypatch.setattr(cli, "bootstrap", _bootstrap)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    return recorder


def _batch(tmp_path: Path, body: Any) -> Path:
    path = tmp_path / "batch.json"
    path.write_text(json.dumps(body), encoding="utf-8")
    return path


def test_check_accepts_example_schema():
    result = runner.invoke(cli.app, ["check", "--schema", str(EXAMPLE_SCHEMA_PATH)])
    assert result.exit_code == 0
    assert "Schema OK: 1 table(s), 1 app(s)." in result.output


def test_check_reports_config_errors(tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("apps:\n  a:\n    secret_key: s\n    tables: [missing]\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["check", "-s", str(bad)])

    assert result.exit_code == 1
    assert "undefined table 'missing'" in result.output


def test_ingest_prints_per_event_outcomes(
    tmp_path: Path, schema_file: Path, executor: _RecordingExecutor
):
    batch = _batch(
        tmp_path,
        {
            "secret_key": SECRET,
            "events": [
                {"_t": "events", "time": 1554130180, "event_type": "game_start"},
                {"_t": "events", "time": "bad", "event_type": "game_end", "score": 42},
            ],
        },
    )

    result = runner.invoke(
        cli.app,
        ["ingest", "game", str(batch), "-s", str(schema_file), "-H", "Referer: https://a.example"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["status"] == 207
    assert payload["accepted"] == 1
    assert payload["results"][1]["error"]["kind"] == "TypeMismatch"
    assert executor.rows[0].as_dict()["referer"] == "https://a.example"


def test_ingest_reports_rejected_batch(
    tmp_path: Path, schema_file: Path, executor: _RecordingExecutor
):
    batch = _batch(tmp_path, {"secret_key": "wrong", "events": []})

    result = runner.invoke(cli.app, ["ingest", "game", str(batch), "-s", str(schema_file)])

    assert result.exit_code == 1
    assert '"InvalidSecret"' in result.output
    assert executor.rows == []


def test_ingest_rejects_malformed_header(
    tmp_path: Path, schema_file: Path, executor: _RecordingExecutor
):
    batch = _batch(tmp_path, {"secret_key": SECRET, "events": []})

    result = runner.invoke(
        cli.app, ["ingest", "game", str(batch), "-s", str(schema_file), "-H", "no-colon"]
    )

    assert result.exit_code != 0
    assert executor.rows == []
