"""Plan label additions and removals for a reviewed submission.

Only managed labels are ever touched: the fixed set below, the
version-qualified labels for the submission's current release, and the
``missing-file-*`` labels for files the run found missing.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Sequence

from .models import BASE_LABEL

MANAGED_LABELS: tuple[str, ...] = (
    BASE_LABEL,
    "not-verifiable",
    "release-documents-checked",
    "required-tests-missing",
    "evidence-missing",
    "unable-to-process",
)
VERSION_LABEL_TEMPLATES: tuple[str, ...] = ("release-%s", "no-failed-tests-%s", "tests-verified-%s")
FILE_LABEL_TEMPLATES: tuple[str, ...] = ("missing-file-%s",)


@dataclass(frozen=True)
class LabelPlan:
    add: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.add and not self.remove

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_managed_label(label: str, *, release_version: str = "", missing_files: Sequence[str] = ()) -> bool:
    if label in MANAGED_LABELS:
        return True
    if release_version and any(template % release_version == label for template in VERSION_LABEL_TEMPLATES):
        return True
    return any(template % name == label for template in FILE_LABEL_TEMPLATES for name in missing_files)


def plan_label_changes(
    current: Iterable[str],
    verdict_labels: Iterable[str],
    *,
    release_version: str = "",
    missing_files: Sequence[str] = (),
) -> LabelPlan:
    """Diff the submission's labels against the verdict's.

    Adds are managed verdict labels not yet on the submission; removals are
    managed submission labels the verdict no longer carries. Both keep the
    order of their source list.
    """
    current_labels = list(current)
    wanted = list(verdict_labels)

    def managed(label: str) -> bool:
        return is_managed_label(label, release_version=release_version, missing_files=missing_files)

    add: list[str] = []
    for label in wanted:
        if managed(label) and label not in current_labels and label not in add:
            add.append(label)

    remove: list[str] = []
    for label in current_labels:
        if managed(label) and label not in wanted and label not in remove:
            remove.append(label)

    return LabelPlan(add=add, remove=remove)
