"""Read JUnit evidence and reconcile it against a requirement set."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .config import EVIDENCE_FILE_NAME
from .errors import EvidenceCorrupt, EvidenceMissing
from .models import Submission
from .requirements import RequirementSet

SCOPE_MARKER = "[Conformance]"
NAME_PREFIX = "[It] "
ENTITY_REPLACEMENTS: tuple[tuple[str, str], ...] = (
    ("&#39;", "'"),
    ("&#34;", '"'),
    ("&gt;", ">"),
)
# Upstream evidence quotes this command inconsistently across releases.
LITERAL_REPLACEMENTS: tuple[tuple[str, str], ...] = (
    ("'cat /tmp/health'", '"cat /tmp/health"'),
)
REPORT_ROOT_TAGS = ("testsuites", "testsuite")


class OutcomeStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TestOutcome:
    name: str
    status: OutcomeStatus
    detail: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == OutcomeStatus.PASSED


def normalize_test_name(raw: str) -> str:
    name = raw
    for entity, replacement in ENTITY_REPLACEMENTS:
        name = name.replace(entity, replacement)
    for literal, replacement in LITERAL_REPLACEMENTS:
        name = name.replace(literal, replacement)
    if name.startswith(NAME_PREFIX):
        name = name[len(NAME_PREFIX):]
    return name


def _failure_detail(case: ET.Element) -> str | None:
    for tag in ("failure", "error"):
        node = case.find(tag)
        if node is not None:
            detail = node.attrib.get("message") or (node.text or "").strip()
            return detail or tag
    return None


def extract_outcomes(raw_xml: str) -> list[TestOutcome]:
    """Parse in-scope, non-skipped test cases from a JUnit report in document order."""
    try:
        root = ET.fromstring(raw_xml)
    except ET.ParseError as exc:
        raise EvidenceCorrupt(f"unable to parse {EVIDENCE_FILE_NAME} file, {exc}") from exc
    if root.tag not in REPORT_ROOT_TAGS:
        raise EvidenceCorrupt(
            f"unable to parse {EVIDENCE_FILE_NAME} file, unexpected root element <{root.tag}>"
        )

    outcomes: list[TestOutcome] = []
    for case in root.iter("testcase"):
        if case.find("skipped") is not None:
            continue
        raw_name = case.attrib.get("name", "")
        if SCOPE_MARKER not in raw_name:
            continue
        detail = _failure_detail(case)
        outcomes.append(
            TestOutcome(
                name=normalize_test_name(raw_name),
                status=OutcomeStatus.FAILED if detail is not None else OutcomeStatus.PASSED,
                detail=detail,
            )
        )
    return outcomes


def submitted_outcomes(submission: Submission) -> list[TestOutcome]:
    evidence = submission.file_by_name(EVIDENCE_FILE_NAME)
    if evidence is None:
        raise EvidenceMissing(f"unable to find file {EVIDENCE_FILE_NAME}")
    return extract_outcomes(evidence.contents)


def reconcile(required: RequirementSet, outcomes: Iterable[TestOutcome]) -> list[str]:
    """Mark required tests that passed and return the sorted names still missing."""
    for outcome in outcomes:
        if not outcome.passed:
            continue
        required.mark_satisfied(outcome.name)
    return required.missing()
