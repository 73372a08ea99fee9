"""Tests for the WS payload models and JSON Schema export utility."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from iotview.ws_models import SCHEMA_VERSION, ChartPayload, LiveWsPayload
from iotview.ws_schema_export import export_schema, main


def _status() -> dict:
    return {"state": "idle", "mode": "relative", "gain": 100, "gain_range": [1, 200]}


def test_minimal_payload() -> None:
    payload = LiveWsPayload(server_time="2025-01-01T00:00:00Z", session=_status())
    d = payload.model_dump()
    assert d["schema_version"] == SCHEMA_VERSION
    assert d["kind"] == "snapshot"
    assert d["chart"] is None
    assert d["messages"] is None


def test_chart_rows_allow_missing_markers() -> None:
    payload = LiveWsPayload.model_validate(
        {
            "server_time": "2025-01-01T00:00:00Z",
            "session": _status(),
            "chart": {
                "length": 2,
                "rows": [
                    {"idx": 0, "values": {"a": None}},
                    {"idx": 1, "values": {"a": 1.5}},
                ],
                "series": [{"label": "a", "title": "a", "points": 1, "y_domain": [1.4, 1.6]}],
            },
        }
    )
    assert payload.chart.rows[0].values["a"] is None
    assert payload.chart.rows[1].idx == 1


def test_chart_rows_reject_values_outside_the_values_map() -> None:
    with pytest.raises(ValidationError):
        ChartPayload.model_validate({"length": 1, "rows": [{"idx": 0, "a": 1.0}]})


def test_export_schema_returns_valid_json() -> None:
    text = export_schema()
    schema = json.loads(text)
    assert isinstance(schema, dict)
    assert "properties" in schema
    assert text.endswith("\n")


def test_export_schema_writes_and_creates_parents(tmp_path: Path) -> None:
    out = tmp_path / "a" / "b" / "schema.json"
    text = export_schema(out_path=out)
    assert out.read_text() == text


def test_check_mode(tmp_path: Path, capsys) -> None:
    out = tmp_path / "schema.json"
    with pytest.raises(SystemExit):
        main(["--out", str(out), "--check"])

    main(["--out", str(out)])
    main(["--out", str(out), "--check"])
    assert "up to date" in capsys.readouterr().out

    out.write_text("{}\n")
    with pytest.raises(SystemExit):
        main(["--out", str(out), "--check"])
