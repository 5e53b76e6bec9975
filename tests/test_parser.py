"""Tests for the pipe-delimited formulary file parser."""

from __future__ import annotations

import gzip

import pytest

from medicare.formulary.exceptions import FormularyFileNotFound
from medicare.formulary.models import ResolvedRelease
from medicare.formulary.parser import (
    iter_coverage_records,
    iter_lines,
    iter_plan_records,
    load_dataset,
    locate_reference_files,
)

from conftest import SAMPLE_COVERAGE, SAMPLE_PLANS, coverage_line, plan_line


# ---------------------------------------------------------------------------
# locate_reference_files
# ---------------------------------------------------------------------------


def test_locate_ignores_decoy_files(write_release, tmp_path):
    release = write_release(tmp_path / "rel", SAMPLE_PLANS, SAMPLE_COVERAGE)
    (release / "beneficiary cost file  PPUF_2025Q4.txt").write_text("x\n")
    (release / "excluded drugs formulary file  PPUF_2025Q4.txt").write_text("x\n")
    (release / "Indication Based Coverage Formulary File  PPUF_2025Q4.txt").write_text("x\n")
    (release / "formulary notes.pdf").write_text("x\n")

    files = locate_reference_files(release)

    assert files.coverage_path.name == "basic drugs formulary file  PPUF_2025Q4.txt"
    assert files.plan_path.name == "plan information  PPUF_2025Q4.txt"


def test_locate_is_case_insensitive_and_recursive(tmp_path):
    nested = tmp_path / "rel" / "SPUF_2025"
    nested.mkdir(parents=True)
    (nested / "PLAN INFORMATION.TXT").write_text("h\n")
    (nested / "Basic Drugs FORMULARY File.txt.gz").write_bytes(gzip.compress(b"h\n"))

    files = locate_reference_files(tmp_path / "rel")

    assert files.plan_path.name == "PLAN INFORMATION.TXT"
    assert files.coverage_path.name == "Basic Drugs FORMULARY File.txt.gz"


def test_locate_missing_coverage_file(tmp_path):
    release = tmp_path / "rel"
    release.mkdir()
    (release / "plan information.txt").write_text("h\n")

    with pytest.raises(FormularyFileNotFound, match="No formulary file"):
        locate_reference_files(release)


def test_locate_ambiguous_coverage_file(write_release, tmp_path):
    release = write_release(tmp_path / "rel", SAMPLE_PLANS, SAMPLE_COVERAGE)
    (release / "basic drugs formulary file  PPUF_2025Q3.txt").write_text("h\n")

    with pytest.raises(FormularyFileNotFound, match="Ambiguous formulary file"):
        locate_reference_files(release)


def test_locate_missing_directory(tmp_path):
    with pytest.raises(FormularyFileNotFound):
        locate_reference_files(tmp_path / "nope")


# ---------------------------------------------------------------------------
# Line and record streaming
# ---------------------------------------------------------------------------


def test_iter_lines_skips_only_header_and_strips_crlf(tmp_path):
    path = tmp_path / "plans.txt"
    path.write_bytes(b"HEADER\r\nfirst\r\nsecond\r\n")
    assert list(iter_lines(path)) == ["first", "second"]


def test_iter_lines_reads_gzip(tmp_path):
    path = tmp_path / "plans.txt.gz"
    path.write_bytes(gzip.compress(b"HEADER\nrow-a\nrow-b\n"))
    assert list(iter_lines(path)) == ["row-a", "row-b"]


def test_iter_lines_empty_file(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_text("")
    assert list(iter_lines(path)) == []


def test_plan_records_fixed_positions(write_release, tmp_path):
    release = write_release(
        tmp_path / "rel", [plan_line("H1111", "001", "Alpha Rx Plan", "F1", "CA")], []
    )
    files = locate_reference_files(release)

    [plan] = list(iter_plan_records(files.plan_path))

    assert plan.contract_id == "H1111"
    assert plan.plan_id == "001"
    assert plan.segment_id == "000"
    assert plan.plan_name == "Alpha Rx Plan"
    assert plan.formulary_id == "F1"
    assert plan.state == "CA"


def test_coverage_records_fixed_positions(write_release, tmp_path):
    release = write_release(
        tmp_path / "rel",
        [],
        [coverage_line("F2", "111", "000111", "3", ql="Y", pa="N", st="Y", ql_amount="30", ql_days="28")],
    )
    files = locate_reference_files(release)

    [row] = list(iter_coverage_records(files.coverage_path))

    assert (row.formulary_id, row.rxcui, row.ndc, row.tier) == ("F2", "111", "000111", "3")
    assert row.has_quantity_limit is True
    assert row.quantity_limit_amount == "30"
    assert row.quantity_limit_days == "28"
    assert row.requires_prior_auth is False
    assert row.has_step_therapy is True


def test_short_lines_pad_with_empty_strings(tmp_path):
    path = tmp_path / "basic drugs formulary.txt"
    path.write_text("HEADER\nF1|1|2025|444\n\nF2\n")

    rows = list(iter_coverage_records(path))

    assert len(rows) == 2
    assert rows[0].rxcui == "444"
    assert rows[0].ndc == ""
    assert rows[0].tier_level == "Unknown Tier"
    assert rows[0].requires_prior_auth is False
    assert rows[1].formulary_id == "F2"
    assert rows[1].rxcui == ""


def test_flags_are_case_insensitive(tmp_path):
    path = tmp_path / "basic drugs formulary.txt"
    path.write_text("HEADER\n" + coverage_line("F1", "1", "2", "1", ql="y", pa="y", st="n") + "\n")

    [row] = list(iter_coverage_records(path))

    assert row.has_quantity_limit is True
    assert row.requires_prior_auth is True
    assert row.has_step_therapy is False


# ---------------------------------------------------------------------------
# load_dataset
# ---------------------------------------------------------------------------


def test_load_dataset_indexes_plans(sample_release_dir):
    release = ResolvedRelease(
        month="2025-11", file_date="2025-11-19", extract_path=sample_release_dir, source="remote",
    )

    dataset = load_dataset(release)

    assert dataset.month == "2025-11"
    assert dataset.source == "remote"
    assert dataset.coverage_path.name.startswith("basic drugs formulary")
    # First plan seen for F2 is its default display plan
    assert dataset.plans["F2"].plan_name == "Beta Rx Plan"
    assert dataset.plans["F2"].state == "TX"
    assert [p.plan_id for p in dataset.plans_by_formulary["F2"]] == ["002", "003"]
    assert dataset.display_plan("F2", state="NY").plan_name == "Gamma Rx Plan"
    assert dataset.display_plan("F2", plan_id="003").state == "NY"
    assert dataset.display_plan("F2", plan_id="F2").plan_name == "Beta Rx Plan"
    assert dataset.display_plan("F9", state="NY") is None
    assert dataset.plans_by_state["NY"] == frozenset({"F2"})
    assert dataset.plans_by_state["CA"] == frozenset({"F1"})
    assert dataset.plans_by_plan_id["001"] == frozenset({"F1"})
    assert dataset.plan_for("F9") is None


def test_load_dataset_gzip_release(write_release, tmp_path):
    release_dir = write_release(tmp_path / "rel", SAMPLE_PLANS, SAMPLE_COVERAGE, gz=True)
    release = ResolvedRelease(
        month="2025-11", file_date="2025-11-19", extract_path=release_dir, source="cache",
    )

    dataset = load_dataset(release)

    assert set(dataset.plans) == {"F1", "F2"}
    assert len(list(iter_coverage_records(dataset.coverage_path))) == len(SAMPLE_COVERAGE)
