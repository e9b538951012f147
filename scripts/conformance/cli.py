from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR.parent) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR.parent))

from conformance.config import VerifierConfig  # noqa: E402
from conformance.errors import ConformanceError, RuleScriptError, SubmissionDocumentError  # noqa: E402
from conformance.models import CommitSummary, Submission, SubmissionFile, VerdictState, submission_from_dict  # noqa: E402
from conformance.render import render_verification_markdown  # noqa: E402
from conformance.requirements import resolve_required_tests  # noqa: E402
from conformance.runner import LOG_TAG, run_sweep, verify_submission  # noqa: E402

EXIT_FAILURE = 1
EXIT_ABORTED = 2


def _read_json(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def load_submission_document(path: Path) -> Submission:
    try:
        doc = _read_json(path)
    except (OSError, ValueError) as exc:
        raise SubmissionDocumentError(f"unable to read submission document {path}: {exc}") from exc
    if not isinstance(doc, dict):
        raise SubmissionDocumentError(f"submission document {path} must be a JSON object")
    return submission_from_dict(doc)


def load_bundle(bundle_dir: Path, *, title: str, number: int = 0, labels: list[str] | None = None) -> Submission:
    """Build a submission from a local tree laid out like the pull request (``v1.30/product/...``)."""
    if not bundle_dir.is_dir():
        raise SubmissionDocumentError(f"bundle directory not found: {bundle_dir}")
    files: list[SubmissionFile] = []
    for path in sorted(p for p in bundle_dir.rglob("*") if p.is_file()):
        try:
            contents = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SubmissionDocumentError(f"unable to read bundle file {path}: {exc}") from exc
        files.append(SubmissionFile(path=path.relative_to(bundle_dir).as_posix(), contents=contents))
    return Submission(
        number=number,
        title=title,
        files=files,
        labels=list(labels or []),
        commits=[CommitSummary(oid="local")],
    )


def _config_from_args(args: argparse.Namespace) -> VerifierConfig:
    return VerifierConfig.from_env(
        metadata_root=Path(args.metadata_root) if args.metadata_root else None,
        latest_release=args.latest,
        lookback=args.lookback,
        rule_paths=args.rules or None,
    )


def cmd_verify(args: argparse.Namespace) -> int:
    try:
        if args.submission:
            submission = load_submission_document(Path(args.submission))
        else:
            if not args.title:
                raise SystemExit("--title is required with --bundle-dir")
            submission = load_bundle(
                Path(args.bundle_dir), title=args.title, number=args.number, labels=args.label
            )
        result = verify_submission(submission, _config_from_args(args))
    except (ConformanceError, RuleScriptError, SubmissionDocumentError) as exc:
        print(f"{LOG_TAG} unable to verify submission: {exc}", file=sys.stderr)
        return EXIT_ABORTED

    stem = f"verdict-{result.submission.number}-{result.verdict.compute_content_hash()[:12]}"
    out_json = Path(args.out_json) if args.out_json else Path(args.out_dir) / f"{stem}.json"
    out_md = Path(args.out_md) if args.out_md else Path(args.out_dir) / f"{stem}.md"

    payload = result.to_json()
    payload["run_record"] = result.run_record.to_dict()
    _write_json(out_json, payload)
    out_md.parent.mkdir(parents=True, exist_ok=True)
    out_md.write_text(render_verification_markdown(result), encoding="utf-8")
    print(f"{LOG_TAG} wrote {out_json}")
    print(f"{LOG_TAG} wrote {out_md}")
    print(result.verdict.comment, end="")
    return EXIT_FAILURE if result.verdict.state == VerdictState.FAILURE else 0


def cmd_sweep(args: argparse.Namespace) -> int:
    submissions_dir = Path(args.submissions)
    if not submissions_dir.is_dir():
        raise SystemExit(f"submissions directory not found: {submissions_dir}")

    submissions: list[Submission] = []
    unreadable: list[dict[str, str]] = []
    for path in sorted(submissions_dir.glob("*.json")):
        try:
            submissions.append(load_submission_document(path))
        except SubmissionDocumentError as exc:
            print(f"{LOG_TAG} skipping {path.name}: {exc}", file=sys.stderr)
            unreadable.append({"path": str(path), "error": str(exc)})

    report = run_sweep(submissions, _config_from_args(args))

    out_jsonl = Path(args.out_jsonl)
    out_jsonl.parent.mkdir(parents=True, exist_ok=True)
    with out_jsonl.open("w", encoding="utf-8") as handle:
        for result in report.results:
            handle.write(json.dumps(result.to_json(), sort_keys=True) + "\n")
    print(f"{LOG_TAG} wrote {out_jsonl}", file=sys.stderr)

    summary = report.to_json()
    summary["unreadable"] = unreadable
    print(json.dumps(summary, indent=2, sort_keys=True))
    return EXIT_FAILURE if report.errors or unreadable else 0


def cmd_required_tests(args: argparse.Namespace) -> int:
    config = VerifierConfig.from_env(metadata_root=Path(args.metadata_root) if args.metadata_root else None)
    try:
        required = resolve_required_tests(args.version, config.metadata_root)
    except ConformanceError as exc:
        print(f"{LOG_TAG} {exc}", file=sys.stderr)
        return EXIT_ABORTED
    for name in sorted(required.tests):
        print(name)
    print(f"{LOG_TAG} {len(required)} required test(s) for {args.version}", file=sys.stderr)
    return 0


def _add_config_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--metadata-root",
        default=None,
        help="Requirement metadata directory (default: $CONFORMANCE_DATA_PATH or kodata/conformance-testdata)",
    )
    parser.add_argument("--latest", default=None, help="Latest release version (default: read stable.txt)")
    parser.add_argument("--lookback", type=int, default=None, help="Supported minor releases behind the latest")
    parser.add_argument("--rules", action="append", default=None, help="Rule script path (repeatable)")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="conformance-review", description="Review conformance submissions against the requirement metadata"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    verify = sub.add_parser("verify", help="Review one submission")
    source = verify.add_mutually_exclusive_group(required=True)
    source.add_argument("--submission", default=None, help="Path to submission JSON document")
    source.add_argument("--bundle-dir", default=None, help="Directory laid out like the submission tree")
    verify.add_argument("--title", default=None, help="Submission title (with --bundle-dir)")
    verify.add_argument("--number", type=int, default=0, help="Submission number (with --bundle-dir)")
    verify.add_argument("--label", action="append", default=None, help="Existing label (with --bundle-dir, repeatable)")
    _add_config_flags(verify)
    verify.add_argument("--out-dir", default="out/conformance", help="Output directory (default: out/conformance)")
    verify.add_argument("--out-json", default=None)
    verify.add_argument("--out-md", default=None)
    verify.set_defaults(func=cmd_verify)

    sweep = sub.add_parser("sweep", help="Review every submission document in a directory")
    sweep.add_argument("--submissions", required=True, help="Directory of submission JSON documents")
    _add_config_flags(sweep)
    sweep.add_argument("--out-jsonl", default="out/conformance/verdicts.jsonl")
    sweep.set_defaults(func=cmd_sweep)

    required = sub.add_parser("required-tests", help="List the required tests for a release version")
    required.add_argument("--version", required=True, help="Release version, e.g. v1.30")
    required.add_argument("--metadata-root", default=None)
    required.set_defaults(func=cmd_required_tests)

    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
