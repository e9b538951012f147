from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .config import LATEST_RELEASE_FILE_NAME, MANIFEST_FILE_NAME, load_schema
from .errors import MetadataCorrupt, MetadataUnavailable
from .versions import parse_version


@dataclass(frozen=True)
class ManifestRecord:
    codename: str
    release: str
    testname: str = ""
    description: str = ""
    file: str = ""

    @property
    def release_tags(self) -> list[str]:
        return [tag.strip() for tag in self.release.split(",") if tag.strip()]


@dataclass
class RequirementSet:
    """Required test codenames mapped to whether passing evidence was found."""

    tests: dict[str, bool] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.tests

    def __len__(self) -> int:
        return len(self.tests)

    def mark_satisfied(self, name: str) -> bool:
        if name not in self.tests:
            return False
        self.tests[name] = True
        return True

    def missing(self) -> list[str]:
        return sorted(name for name, satisfied in self.tests.items() if not satisfied)


def manifest_path(metadata_root: Path, version: str) -> Path:
    return Path(metadata_root) / version.strip() / MANIFEST_FILE_NAME


def manifest_available(metadata_root: Path, version: str) -> bool:
    return bool(version.strip()) and manifest_path(metadata_root, version).is_file()


def _schema_errors(payload: Any) -> list[str]:
    validator = Draft202012Validator(load_schema("requirement-manifest.schema.json"))
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.absolute_path))
    return [f"{'/'.join(map(str, err.absolute_path)) or '<root>'}: {err.message}" for err in errors]


def load_manifest(metadata_root: Path, version: str) -> list[ManifestRecord]:
    path = manifest_path(metadata_root, version)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MetadataUnavailable(f"unable to read requirement manifest for {version.strip()}: {path}") from exc

    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise MetadataCorrupt(f"unable to decode requirement manifest {path}: {exc}") from exc
    if payload is None:
        payload = []

    errors = _schema_errors(payload)
    if errors:
        sample = "; ".join(errors[:5])
        raise MetadataCorrupt(f"requirement manifest {path} has an unexpected shape: {sample}")

    return [
        ManifestRecord(
            codename=entry["codename"],
            release=entry["release"],
            testname=entry.get("testname", ""),
            description=entry.get("description", ""),
            file=entry.get("file", ""),
        )
        for entry in payload
    ]


def resolve_required_tests(target_version: str, metadata_root: Path) -> RequirementSet:
    """Build the requirement set for ``target_version``.

    A test is required when one of its release tags is at or below the target.
    Tags are scanned in declared order and the scan stops at the first match.
    """
    target = parse_version(target_version)
    records = load_manifest(metadata_root, target_version)

    required = RequirementSet()
    for record in records:
        included = False
        for tag in record.release_tags:
            if target >= parse_version(tag):
                included = True
                break
        if included:
            required.tests[record.codename] = False
    return required


def load_latest_release(metadata_root: Path) -> str:
    path = Path(metadata_root) / LATEST_RELEASE_FILE_NAME
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MetadataUnavailable(f"unable to read latest release from {path}") from exc
    latest = content.strip()
    if not latest:
        raise MetadataUnavailable(f"latest release file {path} is empty")
    return latest
