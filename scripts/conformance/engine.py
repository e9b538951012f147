"""Rule engine: binds rule-script step text to handlers and runs scenarios.

A rule script is a YAML document of scenarios. Each scenario is an ordered
list of step texts; each step text is matched against a static, ordered table
of step definitions and the capture groups are passed to the handler as
positional string arguments.

Handlers return ``None`` to pass, return ``NOT_APPLICABLE`` when the step
cannot be evaluated yet, and raise a ``ConformanceError`` to fail.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import yaml
from jsonschema import Draft202012Validator

from .config import load_schema
from .errors import ConformanceError, RuleScriptError
from .models import BASE_LABEL, RunRecord, ScenarioResult, StepResult, StepStatus, Submission
from .versions import DEFAULT_LOOKBACK

PLACEHOLDER_RE = re.compile(r"<([A-Za-z0-9_]+)>")


class _NotApplicable:
    def __repr__(self) -> str:
        return "NOT_APPLICABLE"


NOT_APPLICABLE = _NotApplicable()


@dataclass
class RuleContext:
    submission: Submission
    metadata_root: Path
    target_version: str = ""
    latest_version: str = ""
    lookback: int = DEFAULT_LOOKBACK
    labels: list[str] = field(default_factory=lambda: [BASE_LABEL])
    missing_files: list[str] = field(default_factory=list)
    evidence_version: str = ""

    @classmethod
    def for_submission(
        cls,
        submission: Submission,
        *,
        metadata_root: Path,
        latest_version: str = "",
        lookback: int = DEFAULT_LOOKBACK,
    ) -> "RuleContext":
        return cls(
            submission=submission,
            metadata_root=Path(metadata_root),
            target_version=submission.target_version,
            latest_version=latest_version,
            lookback=lookback,
        )

    def add_label(self, label: str) -> None:
        self.labels.append(label)

    def add_missing_file(self, file_name: str) -> None:
        self.missing_files.append(file_name)


StepHandler = Callable[..., Any]


@dataclass(frozen=True)
class StepDefinition:
    pattern: re.Pattern[str]
    handler: StepHandler
    # Indexes of captured arguments that are themselves regular expressions.
    regex_args: tuple[int, ...] = ()

    @classmethod
    def define(cls, pattern: str, handler: StepHandler, *, regex_args: tuple[int, ...] = ()) -> "StepDefinition":
        return cls(pattern=re.compile(pattern), handler=handler, regex_args=regex_args)


@dataclass(frozen=True)
class BoundStep:
    text: str
    definition: StepDefinition
    args: tuple[str, ...]


@dataclass(frozen=True)
class Scenario:
    name: str
    description: str
    steps: tuple[BoundStep, ...]


def bind_step(text: str, definitions: Sequence[StepDefinition]) -> BoundStep:
    for definition in definitions:
        match = definition.pattern.fullmatch(text)
        if match:
            args = tuple(group or "" for group in match.groups())
            for index in definition.regex_args:
                try:
                    re.compile(args[index])
                except re.error as exc:
                    raise RuleScriptError(f"step '{text}' has an invalid pattern: {exc}") from exc
            return BoundStep(text=text, definition=definition, args=args)
    raise RuleScriptError(f"no step definition matches '{text}'")


def _substitute(text: str, row: dict[str, str]) -> str:
    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in row:
            raise RuleScriptError(f"step '{text}' references unknown example column '{key}'")
        return row[key]

    return PLACEHOLDER_RE.sub(replace, text)


def _expand_scenario(raw: dict[str, Any]) -> list[tuple[str, str, list[str]]]:
    name = raw["name"]
    description = raw["description"]
    steps = list(raw["steps"])
    examples = raw.get("examples")
    if not examples:
        return [(name, description, steps)]
    return [
        (_substitute(name, row), _substitute(description, row), [_substitute(step, row) for step in steps])
        for row in examples
    ]


def compile_rule_script(payload: Any, definitions: Sequence[StepDefinition], *, source: str = "<rules>") -> list[Scenario]:
    validator = Draft202012Validator(load_schema("rule-script.schema.json"))
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.absolute_path))
    if errors:
        formatted = "\n".join(
            f"- {'/'.join(map(str, err.absolute_path)) or '<root>'}: {err.message}" for err in errors
        )
        raise RuleScriptError(f"{source}: rule script validation failed:\n{formatted}")

    scenarios: list[Scenario] = []
    for raw in payload["scenarios"]:
        for name, description, step_texts in _expand_scenario(raw):
            try:
                bound = tuple(bind_step(text, definitions) for text in step_texts)
            except RuleScriptError as exc:
                raise RuleScriptError(f"{source}: scenario '{name}': {exc}") from exc
            scenarios.append(Scenario(name=name, description=description, steps=bound))
    return scenarios


def load_rule_script(path: Path, definitions: Sequence[StepDefinition]) -> list[Scenario]:
    try:
        payload = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise RuleScriptError(f"{path}: unable to read rule script: {exc}") from exc
    return compile_rule_script(payload, definitions, source=str(path))


def load_rule_scripts(paths: Iterable[Path], definitions: Sequence[StepDefinition]) -> list[Scenario]:
    scenarios: list[Scenario] = []
    for path in paths:
        scenarios.extend(load_rule_script(path, definitions))
    return scenarios


def _safe_message(exc: ConformanceError) -> str:
    return html.escape(str(exc), quote=False)


def run_step(step: BoundStep, context: RuleContext) -> StepResult:
    try:
        outcome = step.definition.handler(context, *step.args)
    except ConformanceError as exc:
        return StepResult(text=step.text, status=StepStatus.FAILED, message=_safe_message(exc))
    if outcome is NOT_APPLICABLE:
        return StepResult(text=step.text, status=StepStatus.NOT_APPLICABLE)
    return StepResult(text=step.text, status=StepStatus.PASSED)


def run_scenario(scenario: Scenario, context: RuleContext) -> ScenarioResult:
    results: list[StepResult] = []
    halted = False
    for step in scenario.steps:
        if halted:
            results.append(StepResult(text=step.text, status=StepStatus.SKIPPED))
            continue
        result = run_step(step, context)
        results.append(result)
        if result.status != StepStatus.PASSED:
            halted = True
    return ScenarioResult(name=scenario.name, description=scenario.description, steps=results)


def run_scenarios(scenarios: Sequence[Scenario], context: RuleContext) -> RunRecord:
    """Run every scenario in order; a halted scenario never stops the next one."""
    return RunRecord(scenarios=[run_scenario(scenario, context) for scenario in scenarios])
