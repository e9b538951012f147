from __future__ import annotations

from dataclasses import dataclass, field

from .config import DOCS_TRAILER
from .engine import RuleContext
from .errors import MalformedVersion
from .models import BASE_LABEL, RunRecord, StepStatus, Verdict, VerdictState
from .requirements import manifest_available
from .versions import parse_version

UNABLE_TO_PROCESS_LABEL = "unable-to-process"
NOT_VERIFIABLE_LABEL = "not-verifiable"
DOCUMENTS_CHECKED_LABEL = "release-documents-checked"


@dataclass
class RequirementSummary:
    description: str
    hints: list[str] = field(default_factory=list)


def _pending_verdict(context: RuleContext) -> Verdict | None:
    """Verdict for a release at or past the latest one whose manifest is not published yet."""
    if not context.target_version or not context.latest_version:
        return None
    try:
        target = parse_version(context.target_version)
    except MalformedVersion:
        return None
    latest = parse_version(context.latest_version)
    if target < latest or manifest_available(context.metadata_root, context.target_version):
        return None
    return Verdict(
        comment=(
            f"The release version {context.target_version} is unable to be processed at this time; "
            "Please wait as this version may become available soon."
        ),
        labels=[BASE_LABEL, UNABLE_TO_PROCESS_LABEL],
        state=VerdictState.PENDING,
    )


def summarize_failures(run_record: RunRecord) -> tuple[list[str], list[RequirementSummary]]:
    """Return every distinct requirement description and the failed ones with their hints."""
    descriptions: list[str] = []
    failed: dict[str, RequirementSummary] = {}
    for scenario in run_record.scenarios:
        description = scenario.description.strip()
        if description not in descriptions:
            descriptions.append(description)
        for step in scenario.steps:
            if step.status != StepStatus.FAILED:
                continue
            summary = failed.setdefault(description, RequirementSummary(description=description))
            hint = step.message or ""
            if hint not in summary.hints:
                summary.hints.append(hint)
    return descriptions, list(failed.values())


def render_comment(total: int, failed: list[RequirementSummary]) -> str:
    if not failed:
        return f"All requirements ({total}) have passed for the submission!\n"
    lines = [f"{total - len(failed)} of {total} requirements have passed. Please review the following:"]
    for summary in failed:
        lines.append(f"- [FAIL] {summary.description}")
        for hint in summary.hints:
            lines.append(f"  - {hint}")
    lines.append("")
    lines.append(f" {DOCS_TRAILER}")
    return "\n".join(lines) + "\n"


def aggregate(run_record: RunRecord, context: RuleContext) -> Verdict:
    """Reduce a run record and the context's label side channel to a verdict.

    Labels keep the order in which the run discovered them; the outcome
    labels are appended last.
    """
    pending = _pending_verdict(context)
    if pending is not None:
        return pending

    descriptions, failed = summarize_failures(run_record)
    labels = list(context.labels)
    if context.target_version:
        labels.append(f"release-{context.target_version}")

    if failed:
        labels.append(NOT_VERIFIABLE_LABEL)
        state = VerdictState.FAILURE
    else:
        labels.append(DOCUMENTS_CHECKED_LABEL)
        state = VerdictState.SUCCESS

    return Verdict(comment=render_comment(len(descriptions), failed), labels=labels, state=state)
