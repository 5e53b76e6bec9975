"""Streaming parser for the pipe-delimited CMS formulary public-use files.

Both files have a single header line followed by ``|``-separated rows.
Either may be gzip-compressed (``.txt.gz``).  Rows are split into fixed
positions; short rows are padded with empty strings instead of failing
the parse.
"""

from __future__ import annotations

import gzip
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from medicare.formulary.exceptions import FormularyFileNotFound
from medicare.formulary.models import (
    CoverageRecord,
    FormularyDataset,
    PlanRecord,
    ResolvedRelease,
)

logger = logging.getLogger(__name__)

DELIMITER = "|"
EXTENSIONS = (".txt", ".txt.gz")

# Plan information file columns
PLAN_CONTRACT_ID = 0
PLAN_PLAN_ID = 1
PLAN_SEGMENT_ID = 2
PLAN_NAME = 4
PLAN_FORMULARY_ID = 5
PLAN_STATE = 10
PLAN_WIDTH = 11

# Basic drugs formulary file columns
COV_FORMULARY_ID = 0
COV_RXCUI = 3
COV_NDC = 4
COV_TIER = 5
COV_QUANTITY_LIMIT = 6
COV_QUANTITY_LIMIT_AMOUNT = 7
COV_QUANTITY_LIMIT_DAYS = 8
COV_PRIOR_AUTH = 9
COV_STEP_THERAPY = 10
COV_WIDTH = 11


@dataclass(frozen=True)
class FileRule:
    keyword: str
    excludes: tuple[str, ...]

    def matches(self, name: str) -> bool:
        lowered = name.lower()
        return (
            self.keyword in lowered
            and lowered.endswith(EXTENSIONS)
            and not any(word in lowered for word in self.excludes)
        )


COVERAGE_FILE = FileRule("formulary", ("cost", "excluded", "indication"))
PLAN_FILE = FileRule("plan", ("cost", "excluded", "formulary"))


@dataclass(frozen=True)
class ReferenceFiles:
    plan_path: Path
    coverage_path: Path


def _find_single(directory: Path, rule: FileRule, label: str) -> Path:
    candidates = sorted(p for p in directory.rglob("*") if p.is_file() and rule.matches(p.name))
    if not candidates:
        names = ", ".join(sorted(p.name for p in directory.rglob("*") if p.is_file()))
        raise FormularyFileNotFound(f"No {label} file found in {directory}. Files: {names}")
    if len(candidates) > 1:
        names = ", ".join(p.name for p in candidates)
        raise FormularyFileNotFound(f"Ambiguous {label} file in {directory}: {names}")
    return candidates[0]


def locate_reference_files(directory: Path) -> ReferenceFiles:
    """Find the one plan file and the one coverage file under *directory*."""
    directory = Path(directory)
    if not directory.is_dir():
        raise FormularyFileNotFound(f"Formulary directory {directory} does not exist")
    return ReferenceFiles(
        plan_path=_find_single(directory, PLAN_FILE, "plan information"),
        coverage_path=_find_single(directory, COVERAGE_FILE, "formulary"),
    )


def iter_lines(path: Path) -> Iterator[str]:
    """Yield data lines of *path*, skipping the header and line endings."""
    opener = gzip.open if path.name.lower().endswith(".gz") else open
    with opener(path, "rt", encoding="utf-8", errors="replace", newline="") as fh:
        next(fh, None)
        for line in fh:
            yield line.rstrip("\r\n")


def _fields(line: str, width: int) -> list[str]:
    values = line.split(DELIMITER)
    if len(values) < width:
        values.extend([""] * (width - len(values)))
    return values


def iter_plan_records(path: Path) -> Iterator[PlanRecord]:
    for line in iter_lines(path):
        if not line:
            continue
        v = _fields(line, PLAN_WIDTH)
        yield PlanRecord(
            contract_id=v[PLAN_CONTRACT_ID],
            plan_id=v[PLAN_PLAN_ID],
            segment_id=v[PLAN_SEGMENT_ID],
            plan_name=v[PLAN_NAME],
            formulary_id=v[PLAN_FORMULARY_ID],
            state=v[PLAN_STATE],
        )


def iter_coverage_records(path: Path) -> Iterator[CoverageRecord]:
    for line in iter_lines(path):
        if not line:
            continue
        v = _fields(line, COV_WIDTH)
        yield CoverageRecord(
            formulary_id=v[COV_FORMULARY_ID],
            rxcui=v[COV_RXCUI],
            ndc=v[COV_NDC],
            tier=v[COV_TIER],
            quantity_limit=v[COV_QUANTITY_LIMIT],
            quantity_limit_amount=v[COV_QUANTITY_LIMIT_AMOUNT],
            quantity_limit_days=v[COV_QUANTITY_LIMIT_DAYS],
            prior_authorization=v[COV_PRIOR_AUTH],
            step_therapy=v[COV_STEP_THERAPY],
        )


def load_dataset(release: ResolvedRelease) -> FormularyDataset:
    """Index the plan file of *release* and locate its coverage file.

    The first plan seen for a formulary ID is its default display plan;
    every plan contributes to the state and plan-ID indexes and to the
    per-formulary plan list used to label filtered results.
    """
    files = locate_reference_files(release.extract_path)
    logger.info("Parsing plan file %s", files.plan_path.name)

    plans: dict[str, PlanRecord] = {}
    by_state: defaultdict[str, set[str]] = defaultdict(set)
    by_plan_id: defaultdict[str, set[str]] = defaultdict(set)
    by_formulary: defaultdict[str, list[PlanRecord]] = defaultdict(list)
    count = 0
    for plan in iter_plan_records(files.plan_path):
        count += 1
        plans.setdefault(plan.formulary_id, plan)
        by_state[plan.state.strip().upper()].add(plan.formulary_id)
        by_plan_id[plan.plan_id].add(plan.formulary_id)
        by_formulary[plan.formulary_id].append(plan)

    logger.info(
        "Indexed %d plan rows covering %d formularies for %s",
        count, len(plans), release.month,
    )
    return FormularyDataset(
        month=release.month,
        file_date=release.file_date,
        source=release.source,
        coverage_path=files.coverage_path,
        plans=plans,
        plans_by_state={k: frozenset(v) for k, v in by_state.items()},
        plans_by_plan_id={k: frozenset(v) for k, v in by_plan_id.items()},
        plans_by_formulary={k: tuple(v) for k, v in by_formulary.items()},
    )
