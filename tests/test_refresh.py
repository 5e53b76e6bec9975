"""Tests for the cache maintenance CLI."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from medicare.formulary.cache_store import CacheStore
from medicare.formulary.exceptions import SourceUnavailable
from medicare.formulary.models import ResolvedRelease
from medicare.formulary.refresh import main, print_status


def _materialize(store: CacheStore, month: str) -> None:
    store.ensure_root()
    store.zip_path_for(month).write_bytes(b"PK")
    store.extract_path_for(month).mkdir()
    store.record(month, store.zip_path_for(month), store.extract_path_for(month))


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("medicare.formulary.refresh.setup_logging"):
        yield


def test_print_status_empty(tmp_path, capsys):
    assert print_status(CacheStore(tmp_path / "cache")) == 0
    assert "No cached releases" in capsys.readouterr().out


def test_print_status_lists_newest_first(tmp_path, capsys):
    store = CacheStore(tmp_path / "cache")
    _materialize(store, "2025-10")
    _materialize(store, "2025-11")
    store.zip_path_for("2025-10").unlink()

    assert print_status(store) == 1

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("2025-11") and "valid" in lines[0]
    assert lines[1].startswith("2025-10") and "stale" in lines[1]


def test_status_flag(tmp_path, capsys):
    store = CacheStore(tmp_path / "cache")
    _materialize(store, "2025-11")

    assert main(["--cache-dir", str(store.root), "--status"]) == 0
    assert "2025-11" in capsys.readouterr().out


def test_clear_flag(tmp_path):
    store = CacheStore(tmp_path / "cache")
    _materialize(store, "2025-11")

    assert main(["--cache-dir", str(store.root), "--clear"]) == 0
    assert not store.root.exists()


def test_status_and_clear_are_exclusive(tmp_path):
    with pytest.raises(SystemExit):
        main(["--cache-dir", str(tmp_path), "--status", "--clear"])


@patch("medicare.formulary.refresh.ReleaseResolver")
def test_refresh_resolves_latest_release(mock_resolver, tmp_path, sample_release_dir):
    mock_resolver.return_value.resolve = AsyncMock(
        return_value=ResolvedRelease(
            month="2025-11", file_date="2025-11-19", extract_path=sample_release_dir, source="remote",
        )
    )

    assert main(["--cache-dir", str(tmp_path / "cache")]) == 0
    mock_resolver.return_value.resolve.assert_awaited_once()


@patch("medicare.formulary.refresh.ReleaseResolver")
def test_refresh_failure_exits_nonzero(mock_resolver, tmp_path):
    mock_resolver.return_value.resolve = AsyncMock(side_effect=SourceUnavailable("catalog down"))

    assert main(["--cache-dir", str(tmp_path / "cache")]) == 1
