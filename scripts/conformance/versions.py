from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

from .errors import MalformedVersion, UnsupportedRelease

# Number of minor releases behind the latest release that are still accepted.
DEFAULT_LOOKBACK = 2

VERSION_RE = re.compile(
    r"^v?(?P<major>[0-9]+)(?:\.(?P<minor>[0-9]+))?(?:\.(?P<patch>[0-9]+))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


@total_ordering
@dataclass(frozen=True)
class ReleaseVersion:
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: str = ""

    @classmethod
    def parse(cls, raw: object) -> "ReleaseVersion":
        if not isinstance(raw, str):
            raise MalformedVersion(f"version must be a string (got {raw!r})")
        match = VERSION_RE.match(raw.strip())
        if not match:
            raise MalformedVersion(f"unable to parse version '{raw.strip()}'")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            prerelease=match.group("prerelease") or "",
        )

    def _sort_key(self) -> tuple[int, int, int, int, str]:
        # A pre-release sorts before the release it precedes.
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, self.prerelease)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ReleaseVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def minor_release(self) -> str:
        return f"v{self.major}.{self.minor}"

    def __str__(self) -> str:
        text = f"v{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        return text


def parse_version(raw: object) -> ReleaseVersion:
    return ReleaseVersion.parse(raw)


def oldest_supported_release(latest: ReleaseVersion, lookback: int = DEFAULT_LOOKBACK) -> ReleaseVersion:
    return ReleaseVersion(major=latest.major, minor=max(latest.minor - lookback, 0))


def is_supported_release(target: str, latest: str, lookback: int = DEFAULT_LOOKBACK) -> None:
    """Raise UnsupportedRelease when ``target`` is older than the lookback window.

    Versions newer than ``latest`` are accepted.
    """
    target_version = parse_version(target)
    latest_version = parse_version(latest)
    oldest = oldest_supported_release(latest_version, lookback)
    if target_version < oldest:
        raise UnsupportedRelease(
            f"unable to use version {target.strip()} because it is older than "
            f"the last currently supported release {oldest.minor_release()}"
        )
