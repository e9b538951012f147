from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

from .versions import DEFAULT_LOOKBACK

PACKAGE_DIR = Path(__file__).resolve().parent
SCHEMA_DIR = PACKAGE_DIR / "schemas"
RULES_DIR = PACKAGE_DIR / "rules"

DATA_PATH_ENV = "CONFORMANCE_DATA_PATH"
DEFAULT_METADATA_ROOT = Path("kodata") / "conformance-testdata"

EVIDENCE_FILE_NAME = "junit_01.xml"
PRODUCT_FILE_NAME = "PRODUCT.yaml"
LATEST_RELEASE_FILE_NAME = "stable.txt"
MANIFEST_FILE_NAME = "conformance.yaml"

DOCS_TRAILER = (
    "for a full list of requirements, please refer to these sections of the docs: "
    "[_content of the PR_](https://github.com/cncf/k8s-conformance/blob/master/instructions.md#contents-of-the-pr), "
    "and [_requirements_](https://github.com/cncf/k8s-conformance/blob/master/instructions.md#requirements)."
)


@lru_cache(maxsize=None)
def _load_schema_text(name: str) -> str:
    return (SCHEMA_DIR / name).read_text(encoding="utf-8")


def load_schema(name: str) -> dict[str, Any]:
    return json.loads(_load_schema_text(name))


def default_rule_paths() -> tuple[Path, ...]:
    return tuple(sorted(RULES_DIR.glob("*.yaml")))


@dataclass(frozen=True)
class VerifierConfig:
    """Process-wide settings, read-only for the duration of a run."""

    metadata_root: Path = DEFAULT_METADATA_ROOT
    latest_release: str | None = None
    lookback: int = DEFAULT_LOOKBACK
    rule_paths: tuple[Path, ...] = field(default_factory=default_rule_paths)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> "VerifierConfig":
        env = os.environ if environ is None else environ
        metadata_root = Path(env[DATA_PATH_ENV]) if env.get(DATA_PATH_ENV) else DEFAULT_METADATA_ROOT
        values: dict[str, Any] = {"metadata_root": metadata_root}
        values.update({key: value for key, value in overrides.items() if value is not None})
        if "rule_paths" in values:
            values["rule_paths"] = tuple(Path(p) for p in values["rule_paths"])
        return cls(**values)
