from __future__ import annotations


class ConformanceError(Exception):
    """Base class for findings raised while verifying a submission.

    Raised inside a step, the message becomes that step's failure hint.
    Raised outside a step, it aborts verification of the current submission.
    """


class MalformedVersion(ConformanceError, ValueError):
    pass


class MetadataUnavailable(ConformanceError):
    pass


class MetadataCorrupt(ConformanceError):
    pass


class UnsupportedRelease(ConformanceError):
    pass


class EvidenceMissing(ConformanceError):
    pass


class EvidenceCorrupt(ConformanceError):
    pass


class FileMissing(ConformanceError):
    pass


class FieldInvalid(ConformanceError):
    pass


class FolderStructureInvalid(ConformanceError):
    pass


class TitleMismatch(ConformanceError):
    pass


class FileInvalid(ConformanceError):
    pass


class UnexpectedFile(ConformanceError):
    pass


class CommitHistoryInvalid(ConformanceError):
    pass


class LabelMissing(ConformanceError):
    pass


class EvidenceFailing(ConformanceError):
    pass


class RequiredTestsMissing(ConformanceError):
    pass


class RuleScriptError(ValueError):
    """Raised when a rule script fails schema validation or names an unknown step."""


class SubmissionDocumentError(ValueError):
    """Raised when a submission document cannot be loaded."""
