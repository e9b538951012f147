"""Run the rule scripts over submissions and collect verdicts."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from .aggregate import aggregate
from .config import VerifierConfig
from .engine import RuleContext, Scenario, load_rule_scripts, run_scenarios
from .errors import ConformanceError, RuleScriptError
from .labels import LabelPlan, plan_label_changes
from .models import RunRecord, Submission, Verdict, derive_release_metadata
from .requirements import load_latest_release
from .steps import STEP_DEFINITIONS
from .versions import parse_version

LOG_TAG = "[conformance-review]"


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _elapsed_ms(start_ns: int) -> float:
    return round((time.perf_counter_ns() - start_ns) / 1_000_000, 3)


@dataclass(frozen=True)
class VerificationResult:
    submission: Submission
    context: RuleContext
    run_record: RunRecord
    verdict: Verdict
    label_plan: LabelPlan

    def to_json(self) -> dict[str, Any]:
        return {
            "number": self.submission.number,
            "title": self.submission.title,
            "release_version": self.context.target_version,
            "product_name": self.submission.product_name,
            "verdict": self.verdict.to_dict(),
            "verdict_hash": self.verdict.compute_content_hash(),
            "run_record_hash": self.run_record.compute_content_hash(),
            "label_plan": self.label_plan.to_dict(),
        }


def load_scenarios(config: VerifierConfig) -> list[Scenario]:
    if not config.rule_paths:
        raise RuleScriptError("no rule scripts configured")
    return load_rule_scripts(config.rule_paths, STEP_DEFINITIONS)


def resolve_latest_release(config: VerifierConfig) -> str:
    latest = (config.latest_release or "").strip() or load_latest_release(config.metadata_root)
    # A latest release that does not parse is a broken metadata store, not a finding.
    parse_version(latest)
    return latest


def verify_submission(
    submission: Submission,
    config: VerifierConfig,
    *,
    scenarios: Sequence[Scenario] | None = None,
    latest_release: str | None = None,
) -> VerificationResult:
    """Review one submission end to end.

    Errors raised here (unreadable ``stable.txt``, malformed latest release,
    invalid rule script) abort this submission and propagate to the caller.
    """
    derive_release_metadata(submission)
    latest = latest_release or resolve_latest_release(config)
    compiled = list(scenarios) if scenarios is not None else load_scenarios(config)

    context = RuleContext.for_submission(
        submission,
        metadata_root=config.metadata_root,
        latest_version=latest,
        lookback=config.lookback,
    )
    run_record = run_scenarios(compiled, context)
    verdict = aggregate(run_record, context)
    label_plan = plan_label_changes(
        submission.labels,
        verdict.labels,
        release_version=context.target_version,
        missing_files=context.missing_files,
    )
    return VerificationResult(
        submission=submission,
        context=context,
        run_record=run_record,
        verdict=verdict,
        label_plan=label_plan,
    )


@dataclass(frozen=True)
class SweepError:
    number: int
    error: str

    def to_json(self) -> dict[str, Any]:
        return {"number": self.number, "error": self.error}


@dataclass(frozen=True)
class SweepReport:
    started_at_utc: str
    completed_at_utc: str
    scanned_total: int
    success_count: int
    failure_count: int
    pending_count: int
    error_count: int
    latency_ms: float
    results: tuple[VerificationResult, ...] = ()
    errors: tuple[SweepError, ...] = ()

    def to_json(self) -> dict[str, Any]:
        return {
            "schema_version": 1,
            "kind": "conformance_sweep",
            "started_at_utc": self.started_at_utc,
            "completed_at_utc": self.completed_at_utc,
            "scanned_total": self.scanned_total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "pending_count": self.pending_count,
            "error_count": self.error_count,
            "latency_ms": self.latency_ms,
            "errors": [item.to_json() for item in self.errors],
        }


def run_sweep(submissions: Iterable[Submission], config: VerifierConfig) -> SweepReport:
    """Review submissions in order; a submission that cannot be reviewed is recorded and skipped."""
    start_ns = time.perf_counter_ns()
    started_at_utc = _utc_now()
    pending = list(submissions)

    results: list[VerificationResult] = []
    errors: list[SweepError] = []

    scenarios: list[Scenario] | None = None
    latest: str | None = None
    try:
        scenarios = load_scenarios(config)
        latest = resolve_latest_release(config)
    except (ConformanceError, RuleScriptError) as exc:
        print(f"{LOG_TAG} unable to start sweep: {exc}", file=sys.stderr)
        errors.extend(SweepError(number=item.number, error=str(exc)) for item in pending)
        pending = []

    for submission in pending:
        try:
            result = verify_submission(submission, config, scenarios=scenarios, latest_release=latest)
        except (ConformanceError, RuleScriptError) as exc:
            print(f"{LOG_TAG} skipping submission #{submission.number}: {exc}", file=sys.stderr)
            errors.append(SweepError(number=submission.number, error=str(exc)))
            continue
        results.append(result)

    states = [result.verdict.state.value for result in results]
    return SweepReport(
        started_at_utc=started_at_utc,
        completed_at_utc=_utc_now(),
        scanned_total=len(results) + len(errors),
        success_count=states.count("success"),
        failure_count=states.count("failure"),
        pending_count=states.count("pending"),
        error_count=len(errors),
        latency_ms=_elapsed_ms(start_ns),
        results=tuple(results),
        errors=tuple(errors),
    )
