from __future__ import annotations

from .models import StepStatus
from .runner import VerificationResult


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ").strip()


def render_verification_markdown(result: VerificationResult) -> str:
    verdict = result.verdict
    lines: list[str] = []
    lines.append(f"# Conformance Review: #{result.submission.number} {result.submission.title}".rstrip())
    lines.append("")
    lines.append("## Summary")
    lines.append(f"- Release version: `{result.context.target_version or '(unknown)'}`")
    lines.append(f"- Product: `{result.submission.product_name or '(unknown)'}`")
    lines.append(f"- Latest release: `{result.context.latest_version or '(unknown)'}`")
    lines.append(f"- Verdict: **{verdict.state.value}**")
    lines.append(f"- Verdict hash: `{verdict.compute_content_hash()}`")
    lines.append(f"- Run record hash: `{result.run_record.compute_content_hash()}`")
    lines.append("")

    lines.append("## Comment")
    lines.append(verdict.comment.strip())
    lines.append("")

    lines.append("## Scenarios")
    lines.append("| Scenario | Outcome | Failing step | Message |")
    lines.append("|---|---|---|---|")
    for scenario in result.run_record.scenarios:
        failed = scenario.failed_step
        if failed is not None:
            outcome = StepStatus.FAILED.value
        elif any(step.status == StepStatus.NOT_APPLICABLE for step in scenario.steps):
            outcome = StepStatus.NOT_APPLICABLE.value
        else:
            outcome = StepStatus.PASSED.value
        step_text = f"`{_cell(failed.text)}`" if failed else ""
        message = _cell(failed.message or "") if failed else ""
        lines.append(f"| {_cell(scenario.name)} | `{outcome}` | {step_text} | {message} |")
    lines.append("")

    lines.append("## Labels")
    lines.append(f"- Verdict: {', '.join(f'`{label}`' for label in verdict.labels)}")
    plan = result.label_plan
    lines.append(f"- Add: {', '.join(f'`{label}`' for label in plan.add) or '(none)'}")
    lines.append(f"- Remove: {', '.join(f'`{label}`' for label in plan.remove) or '(none)'}")

    return "\n".join(lines).rstrip() + "\n"
