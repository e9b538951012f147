from __future__ import annotations

import json
import posixpath
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from hashlib import sha256
from typing import Any

from .errors import SubmissionDocumentError

BASE_LABEL = "conformance-product-submission"

FOLDER_METADATA_RE = re.compile(r"(v[0-9]+\.[0-9]+)/(.*)/.*")


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    NOT_APPLICABLE = "not_applicable"
    SKIPPED = "skipped"


class VerdictState(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass(frozen=True)
class SubmissionFile:
    path: str
    contents: str = ""
    blob_url: str | None = None

    @property
    def base_name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def folder(self) -> str:
        return posixpath.dirname(self.path) or "."


@dataclass(frozen=True)
class StatusContext:
    context: str
    state: str


@dataclass(frozen=True)
class CommitSummary:
    oid: str
    contexts: list[StatusContext] = field(default_factory=list)


@dataclass
class Submission:
    number: int
    title: str
    author: str = ""
    owner: str = ""
    repository: str = ""
    files: list[SubmissionFile] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    commits: list[CommitSummary] = field(default_factory=list)
    url_content_types: dict[str, str] = field(default_factory=dict)
    target_version: str = ""
    product_name: str = ""

    def file_by_name(self, base_name: str) -> SubmissionFile | None:
        wanted = base_name.casefold()
        for item in self.files:
            if item.base_name.casefold() == wanted:
                return item
        return None

    def has_label(self, label: str) -> bool:
        return label in self.labels


def derive_release_metadata(submission: Submission) -> Submission:
    """Set ``target_version`` and ``product_name`` from the first file under ``{version}/{product}/``."""
    for item in submission.files:
        match = FOLDER_METADATA_RE.search(item.path)
        if match:
            submission.target_version = match.group(1)
            submission.product_name = match.group(2)
            break
    return submission


@dataclass(frozen=True)
class StepResult:
    text: str
    status: StepStatus
    message: str | None = None


@dataclass(frozen=True)
class ScenarioResult:
    name: str
    description: str
    steps: list[StepResult] = field(default_factory=list)

    @property
    def failed_step(self) -> StepResult | None:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _content_hash(payload: Any) -> str:
    return sha256(_canonical_json(payload).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class RunRecord:
    scenarios: list[ScenarioResult]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_canonical_json(self) -> str:
        return _canonical_json(self.to_dict())

    def compute_content_hash(self) -> str:
        return _content_hash(self.to_dict())


@dataclass(frozen=True)
class Verdict:
    comment: str
    labels: list[str]
    state: VerdictState

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def compute_content_hash(self) -> str:
        return _content_hash(self.to_dict())


def _str_list(raw: object) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw if isinstance(item, (str, int, float))]


def submission_file_from_dict(doc: dict[str, Any]) -> SubmissionFile:
    path = str(doc.get("path") or doc.get("name") or "").strip()
    if not path:
        raise SubmissionDocumentError("submission file entry missing required path")
    blob_url = doc.get("blob_url")
    return SubmissionFile(
        path=path,
        contents=str(doc.get("contents", "") or ""),
        blob_url=str(blob_url) if blob_url else None,
    )


def commit_summary_from_dict(doc: dict[str, Any]) -> CommitSummary:
    contexts_raw = doc.get("contexts") or []
    if not isinstance(contexts_raw, list):
        contexts_raw = []
    return CommitSummary(
        oid=str(doc.get("oid", "")),
        contexts=[
            StatusContext(context=str(c.get("context", "")), state=str(c.get("state", "")))
            for c in contexts_raw
            if isinstance(c, dict)
        ],
    )


def submission_from_dict(doc: dict[str, Any]) -> Submission:
    if not isinstance(doc, dict):
        raise SubmissionDocumentError("submission document must be an object")
    try:
        number = int(doc.get("number", 0) or 0)
    except (TypeError, ValueError) as exc:
        raise SubmissionDocumentError(f"submission number must be an integer (got {doc.get('number')!r})") from exc

    files_raw = doc.get("files") or []
    if not isinstance(files_raw, list):
        raise SubmissionDocumentError("submission files must be a list")
    commits_raw = doc.get("commits") or []
    if not isinstance(commits_raw, list):
        commits_raw = []
    content_types = doc.get("url_content_types") if isinstance(doc.get("url_content_types"), dict) else {}

    return Submission(
        number=number,
        title=str(doc.get("title", "") or ""),
        author=str(doc.get("author", "") or ""),
        owner=str(doc.get("owner", "") or ""),
        repository=str(doc.get("repository", "") or ""),
        files=[submission_file_from_dict(f) for f in files_raw if isinstance(f, dict)],
        labels=_str_list(doc.get("labels")),
        commits=[commit_summary_from_dict(c) for c in commits_raw if isinstance(c, dict)],
        url_content_types={str(k): str(v) for k, v in content_types.items()},
    )
