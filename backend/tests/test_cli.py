"""Tests for the ridemap command line entry point."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from ridemap import cli
from ridemap.db import database
from ridemap.services import ingest_rides, rwgps

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

    from conftest import TripFactory
    from ridemap.core import config


@pytest.fixture
def repo(monkeypatch: pytest.MonkeyPatch) -> database.InMemoryRideRepository:
    repo = database.InMemoryRideRepository()
    monkeypatch.setattr(database, "get_ride_repository", lambda _settings: repo)
    return repo


def test_preprocess_prints_summary(
    settings: config.Settings,
    repo: database.InMemoryRideRepository,
    make_trip: TripFactory,
    capsys: pytest.CaptureFixture[str],
) -> None:
    (settings.raw_rides_dir / "1.json").write_text(
        json.dumps(make_trip("1")), encoding="utf-8"
    )
    (settings.raw_rides_dir / "2.json").write_text("oops", encoding="utf-8")

    assert cli.main(["preprocess"]) == 0

    out = capsys.readouterr().out
    assert "Processed 2 file(s): ok=1, no_geometry=0, failed=1" in out
    assert repo.existing_ids() == {"1"}
    assert repo.get_meta(ingest_rides.LAST_RUN_KEY) is not None


def test_preprocess_source_dir_and_workers(
    settings: config.Settings,
    repo: database.InMemoryRideRepository,
    make_trip: TripFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    source_dir = settings.raw_rides_dir.parent / "elsewhere"
    source_dir.mkdir()
    (source_dir / "9.json").write_text(
        json.dumps(make_trip("9")), encoding="utf-8"
    )
    seen_workers: list[int] = []
    original = ingest_rides.ingest_files

    def recording_ingest_files(
        paths: Iterable[pathlib.Path],
        repo_: database.RideRepositoryProtocol,
        settings_: config.Settings,
    ) -> list[ingest_rides.IngestOutcome]:
        seen_workers.append(settings_.ingest_workers)
        return original(paths, repo_, settings_)

    monkeypatch.setattr(ingest_rides, "ingest_files", recording_ingest_files)

    assert (
        cli.main(["preprocess", "--source-dir", str(source_dir), "--workers", "1"])
        == 0
    )
    assert repo.existing_ids() == {"9"}
    assert seen_workers == [1]


def test_fetch_reports_downloaded_rides(
    settings: config.Settings,
    repo: database.InMemoryRideRepository,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    class FakeClient:
        def __init__(self, settings: config.Settings) -> None:
            self.settings = settings

        def __enter__(self) -> FakeClient:
            return self

        def __exit__(self, *exc_info: object) -> None:
            return None

    monkeypatch.setattr(rwgps, "RideWithGPSClient", FakeClient)
    monkeypatch.setattr(
        rwgps, "download_new_rides", lambda client, repo_: ["10", "11"]
    )

    assert cli.main(["fetch"]) == 0
    assert "Fetched 2 new ride(s)" in capsys.readouterr().out


def test_fetch_without_credentials_fails(
    settings: config.Settings,
    repo: database.InMemoryRideRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(settings, "rwgps_token", None)
    assert cli.main(["fetch"]) == 1


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])
