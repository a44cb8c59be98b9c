"""Tests for the ``python -m segment_match`` command line interface."""

from __future__ import annotations

import json

import polyline
import pytest

from segment_match.cli import main
from segment_match.store import SqlRouteStore, build_engine, build_session_factory, init_db

from conftest import make_samples, make_summary, northward


@pytest.fixture
def database_url(tmp_path) -> str:
    url = f"sqlite:///{tmp_path / 'segments.db'}"
    engine = build_engine(url)
    init_db(engine)
    store = SqlRouteStore(build_session_factory(engine))
    store.ingest_activity(
        make_summary(101, 1),
        make_samples(northward(-100.0, 1100.0, 50.0)),
    )
    store.ingest_activity(
        make_summary(201, 2),
        make_samples(northward(0.0, 1000.0, 50.0)),
    )
    engine.dispose()
    return url


def _run(capsys, database_url, *args):
    code = main(["--database-url", database_url, *args])
    out = capsys.readouterr().out.strip()
    return code, (json.loads(out) if out else None)


def _create_segment(capsys, database_url) -> int:
    encoded = polyline.encode(northward(0.0, 1000.0, 500.0))
    code, payload = _run(
        capsys, database_url, "create-segment", "--athlete", "1", "--name", "Hill", "--polyline", encoded
    )
    assert code == 0
    return payload["segment_id"]


def test_init_db(capsys, tmp_path) -> None:
    code, payload = _run(capsys, f"sqlite:///{tmp_path / 'fresh.db'}", "init-db")
    assert code == 0
    assert payload == {"initialised": True}


def test_matches_and_metrics(capsys, database_url) -> None:
    segment_id = _create_segment(capsys, database_url)

    code, listings = _run(capsys, database_url, "matches", str(segment_id), "--athlete", "1")
    assert code == 0
    assert [item["activity_id"] for item in listings] == [101]
    assert listings[0]["overlap_percentage"] == pytest.approx(100.0, abs=0.5)

    code, rng = _run(capsys, database_url, "indices", str(segment_id), "101", "--athlete", "1")
    assert code == 0
    assert rng == {"start_index": 2, "end_index": 22}

    code, metrics = _run(capsys, database_url, "metrics", str(segment_id), "101", "--athlete", "1")
    assert code == 0
    assert metrics["distance_m"] == pytest.approx(1000.0, abs=0.05)
    assert metrics["avg_hr"] == pytest.approx(150.0)


def test_create_segment_from_activity(capsys, database_url) -> None:
    code, payload = _run(
        capsys,
        database_url,
        "create-segment",
        "--athlete",
        "1",
        "--name",
        "Cut",
        "--activity",
        "101",
        "--start",
        "2",
        "--end",
        "23",
    )
    assert code == 0
    assert payload["length_m"] == pytest.approx(1000.0, abs=0.05)

    code, segments = _run(capsys, database_url, "segments", "--athlete", "1")
    assert [seg["name"] for seg in segments] == ["Cut"]


def test_not_found_and_ownership_exit_non_zero(capsys, database_url) -> None:
    segment_id = _create_segment(capsys, database_url)

    code, _ = _run(capsys, database_url, "matches", "999", "--athlete", "1")
    assert code != 0
    code, _ = _run(capsys, database_url, "matches", str(segment_id), "--athlete", "2")
    assert code != 0
    code, _ = _run(capsys, database_url, "metrics", str(segment_id), "201", "--athlete", "1")
    assert code != 0


def test_invalidate_commands(capsys, database_url) -> None:
    segment_id = _create_segment(capsys, database_url)
    _run(capsys, database_url, "matches", str(segment_id), "--athlete", "1")

    code, payload = _run(capsys, database_url, "invalidate-activity", "101")
    assert (code, payload) == (0, {"removed": 1})
    code, payload = _run(capsys, database_url, "invalidate-segment", str(segment_id))
    assert (code, payload) == (0, {"removed": 0})
