"""Step handlers for submission rule scripts and their dispatch table."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from email.utils import parseaddr
from typing import Any
from urllib.parse import urlsplit

import yaml

from .config import EVIDENCE_FILE_NAME, PRODUCT_FILE_NAME
from .engine import NOT_APPLICABLE, RuleContext, StepDefinition
from .errors import (
    CommitHistoryInvalid,
    EvidenceFailing,
    FieldInvalid,
    FileInvalid,
    FileMissing,
    FolderStructureInvalid,
    LabelMissing,
    RequiredTestsMissing,
    TitleMismatch,
    UnexpectedFile,
)
from .evidence import reconcile, submitted_outcomes
from .models import SubmissionFile
from .requirements import resolve_required_tests
from .versions import is_supported_release, parse_version

TITLE_VERSION_RE = re.compile(r"(.*) (v[0-9]+\.[0-9]+)[ /](.*)")
FOLDER_HINT = (
    "your product submission PR must be in folders structured like "
    "[KubernetesReleaseVersion]/[ProductName], e.g: v1.23/averycooldistro"
)
TITLE_HINT = (
    "title must be formatted like 'Conformance results for [KubernetesReleaseVersion]/[ProductName]' "
    "(e.g: Conformance results for v1.23/CoolKubernetes)"
)


def _require_file(ctx: RuleContext, file_name: str) -> SubmissionFile:
    found = ctx.submission.file_by_name(file_name)
    if found is None:
        raise FileMissing(f"missing required file '{file_name}'")
    return found


def _load_yaml_mapping(ctx: RuleContext, file_name: str) -> dict[str, Any]:
    found = _require_file(ctx, file_name)
    try:
        payload = yaml.safe_load(found.contents)
    except yaml.YAMLError as exc:
        raise FileInvalid(f"unable to read file '{file_name}'") from exc
    if not isinstance(payload, dict):
        raise FileInvalid(f"unable to read file '{file_name}'")
    return payload


def _product_field(ctx: RuleContext, field: str) -> str:
    value = _load_yaml_mapping(ctx, PRODUCT_FILE_NAME).get(field)
    if value is None:
        return ""
    return str(value).strip()


def _is_valid_url(value: str) -> bool:
    if any(ch.isspace() for ch in value):
        return False
    parts = urlsplit(value)
    return bool(parts.scheme and parts.netloc)


def _is_valid_email(value: str) -> bool:
    _, address = parseaddr(value)
    if not address or any(ch.isspace() for ch in address):
        return False
    local, _, domain = address.rpartition("@")
    return bool(local and domain)


# Submission title


def the_title_of_the_submission(ctx: RuleContext) -> None:
    if not ctx.submission.title.strip():
        raise TitleMismatch("title is empty")


def the_title_of_the_submission_matches(ctx: RuleContext, pattern: str) -> None:
    if not re.search(pattern, ctx.submission.title):
        raise TitleMismatch(TITLE_HINT)


def the_release_version_matches_the_title(ctx: RuleContext) -> Any:
    if not ctx.target_version:
        return NOT_APPLICABLE
    match = TITLE_VERSION_RE.search(ctx.submission.title)
    title_version = match.group(2) if match else ""
    if title_version != ctx.target_version:
        raise TitleMismatch(
            f"the Kubernetes release version in the title ({title_version}) and "
            f"folder structure ({ctx.target_version}) don't match"
        )
    return None


# Files and folders


def the_files_in_the_submission(ctx: RuleContext) -> None:
    if not ctx.submission.files:
        raise FileMissing("there were no files found in the submission")


def the_files_included_are_only(ctx: RuleContext, allowed_raw: str) -> None:
    allowed = {name.strip() for name in allowed_raw.split(",") if name.strip()}
    extra = [item.base_name for item in ctx.submission.files if item.base_name not in allowed]
    if extra:
        raise UnexpectedFile(
            f"it appears that there are {len(extra)} non-required file(s) included in the submission: "
            f"{', '.join(extra)}"
        )


def is_included_in_its_file_list(ctx: RuleContext, file_name: str) -> None:
    if ctx.submission.file_by_name(file_name) is None:
        ctx.add_label(f"missing-file-{file_name}")
        ctx.add_missing_file(file_name)
        raise FileMissing(f"missing file '{file_name}'")


def a_file(ctx: RuleContext, file_name: str) -> None:
    _require_file(ctx, file_name)


def file_is_not_empty(ctx: RuleContext, file_name: str) -> None:
    found = ctx.submission.file_by_name(file_name)
    if found is None:
        raise FileMissing(f"unable to find file '{file_name}'")
    if not found.contents.strip():
        raise FileMissing(f"file '{file_name}' is empty")


def file_is_valid(ctx: RuleContext, file_name: str, file_type: str) -> None:
    found = ctx.submission.file_by_name(file_name)
    if found is None:
        raise FileMissing(f"unable to find file '{file_name}'")
    if not found.contents.strip():
        raise FileMissing(f"file '{file_name}' is empty")
    kind = file_type.strip().lower()
    if kind == "yaml":
        try:
            payload = yaml.safe_load(found.contents)
        except yaml.YAMLError as exc:
            raise FileInvalid(f"failed to parse ({file_name}) YAML, {exc}") from exc
        if not isinstance(payload, dict):
            raise FileInvalid(f"failed to parse ({file_name}) YAML, expected a mapping")
    elif kind == "xml":
        try:
            ET.fromstring(found.contents)
        except ET.ParseError as exc:
            raise FileInvalid(f"failed to parse ({file_name}) XML, {exc}") from exc
    else:
        raise FileInvalid(f"unable to validate '{file_name}' as unsupported type '{file_type}'")


def file_folder_structure_matches(ctx: RuleContext, pattern_raw: str) -> None:
    pattern = re.compile(pattern_raw)
    for item in ctx.submission.files:
        match = pattern.search(item.folder)
        if not match:
            raise FolderStructureInvalid(f"file '{item.path}' not allowed. {FOLDER_HINT}")
        groups = match.groups()
        if len(groups) >= 2 and not (groups[0] and groups[1]):
            raise FolderStructureInvalid(FOLDER_HINT)


def there_is_only_one_path_of_folders(ctx: RuleContext) -> None:
    paths: list[str] = []
    for item in ctx.submission.files:
        folder = "./" if item.folder == "." else item.folder
        if folder not in paths:
            paths.append(folder)
    if len(paths) != 1:
        raise FolderStructureInvalid(
            "there should be a single set of products in the submission. "
            f"We found {len(paths)} product submissions: {', '.join(paths)}"
        )


# Release version


def the_release_version(ctx: RuleContext) -> None:
    if not ctx.target_version:
        raise FolderStructureInvalid("unable to find a Kubernetes release version in the folder structure")


def it_is_a_valid_and_supported_release(ctx: RuleContext) -> Any:
    if not ctx.target_version or not ctx.latest_version:
        return NOT_APPLICABLE
    is_supported_release(ctx.target_version, ctx.latest_version, ctx.lookback)
    return None


def a_line_of_the_file_matches(ctx: RuleContext, file_name: str, pattern_raw: str) -> None:
    found = ctx.submission.file_by_name(file_name)
    if found is None:
        raise FileMissing(f"unable to find file '{file_name}'")
    pattern = re.compile(pattern_raw)
    for line in found.contents.splitlines():
        match = pattern.search(line)
        if not match:
            continue
        captured = next((group for group in match.groups() if group), "")
        if captured:
            ctx.evidence_version = captured
        return
    raise FileInvalid(f"the file '{file_name}' does not contain a release version of Kubernetes in it")


def that_version_matches_the_folder_structure(ctx: RuleContext) -> Any:
    if not ctx.evidence_version or not ctx.target_version:
        return NOT_APPLICABLE
    evidence = parse_version(ctx.evidence_version)
    folder = parse_version(ctx.target_version)
    if (evidence.major, evidence.minor) != (folder.major, folder.minor):
        raise FolderStructureInvalid(
            f"the Kubernetes release version in the evidence ({ctx.evidence_version}) doesn't match "
            f"the same version in the folder structure ({ctx.target_version})"
        )
    return None


# Product descriptor


def the_yaml_file_contains_the_field(ctx: RuleContext, file_name: str, field: str) -> None:
    value = _load_yaml_mapping(ctx, file_name).get(field)
    if value is None or not str(value).strip():
        raise FieldInvalid(f"missing or empty field '{field}' in file '{file_name}'")


def the_field_is_a_valid(ctx: RuleContext, field_type: str, field: str) -> None:
    value = _product_field(ctx, field)
    if not value:
        return
    kind = field_type.strip().lower()
    if kind == "url":
        if not _is_valid_url(value):
            raise FieldInvalid(f"URL for field '{field}' in {PRODUCT_FILE_NAME} is not a valid URL, {value}")
    elif kind == "email":
        if not _is_valid_email(value):
            raise FieldInvalid(
                f"Email field '{field}' in {PRODUCT_FILE_NAME} is not a valid address, {value}"
            )
    else:
        raise FieldInvalid(f"field '{field}' in {PRODUCT_FILE_NAME} uses unsupported type '{field_type}'")


def the_field_matches_one_of(ctx: RuleContext, field: str, values_raw: str) -> None:
    value = _product_field(ctx, field)
    if not value:
        raise FieldInvalid(f"missing required field '{field}' in '{PRODUCT_FILE_NAME}'")
    allowed = [item.strip() for item in values_raw.split(",") if item.strip()]
    if value not in allowed:
        raise FieldInvalid(
            f"field '{field}' in '{PRODUCT_FILE_NAME}' is not valid and must be one of the following: "
            f"{', '.join(allowed)}"
        )


def the_url_content_type_matches(ctx: RuleContext, field: str, data_types_raw: str) -> Any:
    resolved = ctx.submission.url_content_types.get(field, "")
    if not resolved:
        return NOT_APPLICABLE
    data_types = data_types_raw.split()
    if not any(data_type in resolved for data_type in data_types):
        raise FieldInvalid(
            f"URL field '{field}' in {PRODUCT_FILE_NAME} resolving content type '{resolved}' "
            f"must be ({', or '.join(data_types)})"
        )
    return None


# Commits and labels


def a_list_of_commits(ctx: RuleContext) -> None:
    if not ctx.submission.commits:
        raise CommitHistoryInvalid("no commits were found")


def there_is_only_one_commit(ctx: RuleContext) -> None:
    if len(ctx.submission.commits) > 1:
        raise CommitHistoryInvalid("more than one commit was found; only one commit is allowed.")


def a_list_of_labels(ctx: RuleContext) -> None:
    if not ctx.submission.labels:
        raise LabelMissing("there are no labels found")


def the_version_label_is_present(ctx: RuleContext, prefix: str) -> Any:
    if not ctx.target_version:
        return NOT_APPLICABLE
    label = prefix + ctx.target_version
    if not ctx.submission.has_label(label):
        raise LabelMissing(f"required label '{label}' not found")
    return None


# Evidence


def the_tests_pass_and_are_successful(ctx: RuleContext) -> Any:
    if not ctx.target_version:
        return NOT_APPLICABLE
    failing = sorted({outcome.name for outcome in submitted_outcomes(ctx.submission) if not outcome.passed})
    if failing:
        ctx.add_label("evidence-missing")
        raise EvidenceFailing("it appears that there are failures in some tests: \n    - " + "\n    - ".join(failing))
    ctx.add_label(f"no-failed-tests-{ctx.target_version}")
    return None


def all_required_tests_are_present(ctx: RuleContext) -> Any:
    if not ctx.target_version:
        return NOT_APPLICABLE
    required = resolve_required_tests(ctx.target_version, ctx.metadata_root)
    missing = reconcile(required, submitted_outcomes(ctx.submission))
    if missing:
        ctx.add_label("required-tests-missing")
        raise RequiredTestsMissing("the following test(s) are missing: \n    - " + "\n    - ".join(missing))
    ctx.add_label(f"tests-verified-{ctx.target_version}")
    return None


STEP_DEFINITIONS: tuple[StepDefinition, ...] = (
    StepDefinition.define(r"the title of the submission", the_title_of_the_submission),
    StepDefinition.define(
        r'the title of the submission matches "([^"]*)"', the_title_of_the_submission_matches, regex_args=(0,)
    ),
    StepDefinition.define(
        r"the release version matches the release version in the title", the_release_version_matches_the_title
    ),
    StepDefinition.define(r"the files in the submission", the_files_in_the_submission),
    StepDefinition.define(r'the files included in the submission are only: "([^"]*)"', the_files_included_are_only),
    StepDefinition.define(r'"([^"]*)" is included in its file list', is_included_in_its_file_list),
    StepDefinition.define(r'an? "([^"]*)" file', a_file),
    StepDefinition.define(r'"([^"]*)" is not empty', file_is_not_empty),
    StepDefinition.define(r'"([^"]*)" is valid "([^"]*)"', file_is_valid),
    StepDefinition.define(
        r'file folder structure matches "([^"]*)"', file_folder_structure_matches, regex_args=(0,)
    ),
    StepDefinition.define(r"there is only one path of folders", there_is_only_one_path_of_folders),
    StepDefinition.define(r"the release version", the_release_version),
    StepDefinition.define(r"it is a valid and supported release", it_is_a_valid_and_supported_release),
    StepDefinition.define(
        r'a line of the file "([^"]*)" matches "([^"]*)"', a_line_of_the_file_matches, regex_args=(1,)
    ),
    StepDefinition.define(
        r"that version matches the release version in the folder structure",
        that_version_matches_the_folder_structure,
    ),
    StepDefinition.define(
        r'the yaml file "([^"]*)" contains the required and non-empty "([^"]*)"',
        the_yaml_file_contains_the_field,
    ),
    StepDefinition.define(r'the content of the "([^"]*)" in the value of "([^"]*)" is a valid .*', the_field_is_a_valid),
    StepDefinition.define(
        r'the field "([^"]*)" matches one of the following values: "([^"]*)"', the_field_matches_one_of
    ),
    StepDefinition.define(
        r'the content of the url in the value of "([^"]*)" matches its "([^"]*)"', the_url_content_type_matches
    ),
    StepDefinition.define(r"a list of commits", a_list_of_commits),
    StepDefinition.define(r"there is only one commit", there_is_only_one_commit),
    StepDefinition.define(r"a list of labels in the submission", a_list_of_labels),
    StepDefinition.define(
        r'the label prefixed with "([^"]*)" and ending with the release version should be present',
        the_version_label_is_present,
    ),
    StepDefinition.define(r"the tests pass and are successful", the_tests_pass_and_are_successful),
    StepDefinition.define(
        rf"all required tests in {re.escape(EVIDENCE_FILE_NAME)} are present", all_required_tests_are_present
    ),
)
