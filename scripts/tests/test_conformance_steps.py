from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from conformance_fixtures import (  # noqa: E402
    PRODUCT_DIR,
    REQUIRED_TESTS,
    junit_report,
    make_submission,
    manifest_entries,
    product_yaml,
    submission_files,
    write_metadata,
)

from conformance import steps  # noqa: E402
from conformance.engine import NOT_APPLICABLE, RuleContext, bind_step  # noqa: E402
from conformance.errors import (  # noqa: E402
    CommitHistoryInvalid,
    EvidenceFailing,
    FieldInvalid,
    FileInvalid,
    FileMissing,
    FolderStructureInvalid,
    LabelMissing,
    MetadataUnavailable,
    RequiredTestsMissing,
    RuleScriptError,
    TitleMismatch,
    UnexpectedFile,
    UnsupportedRelease,
)
from conformance.models import BASE_LABEL, SubmissionFile, derive_release_metadata  # noqa: E402


def _context(submission=None, *, metadata_root: Path = Path("unused"), latest: str = "v1.31") -> RuleContext:
    submission = derive_release_metadata(submission or make_submission())
    return RuleContext.for_submission(submission, metadata_root=metadata_root, latest_version=latest)


class StepTableTest(unittest.TestCase):
    def test_packaged_step_texts_bind_to_expected_handlers(self) -> None:
        cases = {
            "the title of the submission": steps.the_title_of_the_submission,
            "the release version": steps.the_release_version,
            "the release version matches the release version in the title": steps.the_release_version_matches_the_title,
            '"README.md" is included in its file list': steps.is_included_in_its_file_list,
            'a "README.md" file': steps.a_file,
            'an "e2e.log" file': steps.a_file,
            'the content of the "URL" in the value of "website_url" is a valid URL': steps.the_field_is_a_valid,
            "all required tests in junit_01.xml are present": steps.all_required_tests_are_present,
        }
        for text, handler in cases.items():
            with self.subTest(text=text):
                self.assertIs(bind_step(text, steps.STEP_DEFINITIONS).definition.handler, handler)


class TitleStepsTest(unittest.TestCase):
    def test_title_version_must_match_folder(self) -> None:
        ctx = _context(make_submission(title="Conformance results for v1.29/CoolKubernetes"))
        with self.assertRaises(TitleMismatch) as raised:
            steps.the_release_version_matches_the_title(ctx)
        self.assertIn("(v1.29)", str(raised.exception))
        self.assertIn("(v1.30)", str(raised.exception))

    def test_title_check_not_applicable_without_folder_version(self) -> None:
        files = [SubmissionFile(path="README.md", contents="hi")]
        ctx = _context(make_submission(files=files))
        self.assertIs(steps.the_release_version_matches_the_title(ctx), NOT_APPLICABLE)

    def test_title_pattern(self) -> None:
        ctx = _context(make_submission(title="my product results"))
        with self.assertRaises(TitleMismatch):
            steps.the_title_of_the_submission_matches(ctx, r"(.*) (v[0-9]+\.[0-9]+)[ /](.*)")


class FileStepsTest(unittest.TestCase):
    def test_missing_required_file_labels_and_records(self) -> None:
        files = [item for item in submission_files() if item.base_name != "e2e.log"]
        ctx = _context(make_submission(files=files))
        with self.assertRaises(FileMissing) as raised:
            steps.is_included_in_its_file_list(ctx, "e2e.log")
        self.assertEqual(str(raised.exception), "missing file 'e2e.log'")
        self.assertEqual(ctx.labels, [BASE_LABEL, "missing-file-e2e.log"])
        self.assertEqual(ctx.missing_files, ["e2e.log"])

    def test_file_lookup_is_case_insensitive(self) -> None:
        files = [SubmissionFile(path=f"{PRODUCT_DIR}/readme.md", contents="hello")]
        ctx = _context(make_submission(files=files))
        self.assertIsNone(steps.is_included_in_its_file_list(ctx, "README.md"))

    def test_unexpected_files(self) -> None:
        files = submission_files() + [SubmissionFile(path=f"{PRODUCT_DIR}/notes.txt", contents="x")]
        ctx = _context(make_submission(files=files))
        with self.assertRaises(UnexpectedFile) as raised:
            steps.the_files_included_are_only(ctx, "README.md, PRODUCT.yaml, e2e.log, junit_01.xml")
        self.assertIn("notes.txt", str(raised.exception))

    def test_empty_readme(self) -> None:
        ctx = _context(make_submission(files=submission_files(readme="  \n")))
        with self.assertRaises(FileMissing):
            steps.file_is_not_empty(ctx, "README.md")

    def test_invalid_yaml(self) -> None:
        ctx = _context(make_submission(files=submission_files(product="vendor: [broken\n")))
        with self.assertRaises(FileInvalid):
            steps.file_is_valid(ctx, "PRODUCT.yaml", "yaml")
        ctx = _context(make_submission(files=submission_files(product="- just\n- a list\n")))
        with self.assertRaises(FileInvalid):
            steps.file_is_valid(ctx, "PRODUCT.yaml", "yaml")

    def test_folder_structure(self) -> None:
        files = [SubmissionFile(path="cool-kubernetes/README.md", contents="x")]
        ctx = _context(make_submission(files=files))
        with self.assertRaises(FolderStructureInvalid) as raised:
            steps.file_folder_structure_matches(ctx, r"(v[0-9]+\.[0-9]+)/(.*)")
        self.assertIn("file 'cool-kubernetes/README.md' not allowed", str(raised.exception))

    def test_single_product_folder(self) -> None:
        files = submission_files() + [SubmissionFile(path="v1.30/other/README.md", contents="x")]
        ctx = _context(make_submission(files=files))
        with self.assertRaises(FolderStructureInvalid) as raised:
            steps.there_is_only_one_path_of_folders(ctx)
        self.assertEqual(
            str(raised.exception),
            "there should be a single set of products in the submission. "
            f"We found 2 product submissions: {PRODUCT_DIR}, v1.30/other",
        )
        self.assertIsNone(steps.there_is_only_one_path_of_folders(_context()))

    def test_root_level_files_count_as_a_path(self) -> None:
        root_only = [SubmissionFile(path="README.md", contents="x"), SubmissionFile(path="e2e.log", contents="x")]
        self.assertIsNone(steps.there_is_only_one_path_of_folders(_context(make_submission(files=root_only))))

        mixed = [SubmissionFile(path="README.md", contents="x")] + submission_files()
        with self.assertRaises(FolderStructureInvalid) as raised:
            steps.there_is_only_one_path_of_folders(_context(make_submission(files=mixed)))
        self.assertTrue(str(raised.exception).endswith(f"We found 2 product submissions: ./, {PRODUCT_DIR}"))

    def test_invalid_pattern_arguments_are_rejected_when_bound(self) -> None:
        for text in (
            'file folder structure matches "(v[0-9]+"',
            'a line of the file "e2e.log" matches "version: [v"',
            'the title of the submission matches "*broken"',
        ):
            with self.subTest(text=text):
                with self.assertRaises(RuleScriptError) as raised:
                    bind_step(text, steps.STEP_DEFINITIONS)
                self.assertIn("has an invalid pattern", str(raised.exception))


class ReleaseStepsTest(unittest.TestCase):
    def test_unsupported_release(self) -> None:
        ctx = _context(latest="v1.33")
        with self.assertRaises(UnsupportedRelease):
            steps.it_is_a_valid_and_supported_release(ctx)

    def test_release_check_not_applicable_without_latest(self) -> None:
        self.assertIs(steps.it_is_a_valid_and_supported_release(_context(latest="")), NOT_APPLICABLE)

    def test_e2e_log_version_is_captured_and_compared(self) -> None:
        ctx = _context()
        pattern = r"e2e (?:test|suite) version: (v[0-9]+\.[0-9]+(?:\.[0-9]+)?)"
        steps.a_line_of_the_file_matches(ctx, "e2e.log", pattern)
        self.assertEqual(ctx.evidence_version, "v1.30.2")
        self.assertIsNone(steps.that_version_matches_the_folder_structure(ctx))

        ctx = _context(make_submission(files=submission_files(e2e_log="e2e test version: v1.29.4\n")))
        steps.a_line_of_the_file_matches(ctx, "e2e.log", pattern)
        with self.assertRaises(FolderStructureInvalid):
            steps.that_version_matches_the_folder_structure(ctx)

    def test_e2e_log_without_version_line(self) -> None:
        ctx = _context(make_submission(files=submission_files(e2e_log="nothing to see\n")))
        with self.assertRaises(FileInvalid):
            steps.a_line_of_the_file_matches(ctx, "e2e.log", r"e2e test version: (v[0-9.]+)")
        self.assertIs(steps.that_version_matches_the_folder_structure(ctx), NOT_APPLICABLE)


class ProductStepsTest(unittest.TestCase):
    def test_required_field_missing_or_blank(self) -> None:
        for overrides in ({"documentation_url": None}, {"documentation_url": "   "}):
            with self.subTest(overrides=overrides):
                ctx = _context(make_submission(files=submission_files(product=product_yaml(**overrides))))
                with self.assertRaises(FieldInvalid) as raised:
                    steps.the_yaml_file_contains_the_field(ctx, "PRODUCT.yaml", "documentation_url")
                self.assertEqual(
                    str(raised.exception), "missing or empty field 'documentation_url' in file 'PRODUCT.yaml'"
                )

    def test_url_and_email_validation(self) -> None:
        ctx = _context(
            make_submission(
                files=submission_files(
                    product=product_yaml(website_url="not a url", contact_email_address="nobody")
                )
            )
        )
        with self.assertRaises(FieldInvalid):
            steps.the_field_is_a_valid(ctx, "URL", "website_url")
        with self.assertRaises(FieldInvalid):
            steps.the_field_is_a_valid(ctx, "email", "contact_email_address")
        self.assertIsNone(steps.the_field_is_a_valid(_context(), "URL", "website_url"))
        self.assertIsNone(steps.the_field_is_a_valid(_context(), "email", "contact_email_address"))

    def test_optional_url_field_may_be_absent(self) -> None:
        ctx = _context(make_submission(files=submission_files(product=product_yaml(repo_url=None))))
        self.assertIsNone(steps.the_field_is_a_valid(ctx, "URL", "repo_url"))

    def test_product_type_must_be_known(self) -> None:
        ctx = _context(make_submission(files=submission_files(product=product_yaml(type="appliance"))))
        with self.assertRaises(FieldInvalid):
            steps.the_field_matches_one_of(ctx, "type", "installer, distribution, hosted")
        self.assertIsNone(steps.the_field_matches_one_of(_context(), "type", "installer, distribution, hosted"))

    def test_url_content_type(self) -> None:
        self.assertIs(steps.the_url_content_type_matches(_context(), "website_url", "text/html"), NOT_APPLICABLE)
        ctx = _context(make_submission(url_content_types={"product_logo_url": "image/png"}))
        with self.assertRaises(FieldInvalid):
            steps.the_url_content_type_matches(ctx, "product_logo_url", "image/svg application/pdf")
        ctx = _context(make_submission(url_content_types={"website_url": "text/html; charset=utf-8"}))
        self.assertIsNone(steps.the_url_content_type_matches(ctx, "website_url", "text/html"))


class CommitAndLabelStepsTest(unittest.TestCase):
    def test_commit_history(self) -> None:
        with self.assertRaises(CommitHistoryInvalid):
            steps.a_list_of_commits(_context(make_submission(commits=0)))
        with self.assertRaises(CommitHistoryInvalid):
            steps.there_is_only_one_commit(_context(make_submission(commits=3)))
        self.assertIsNone(steps.there_is_only_one_commit(_context()))

    def test_version_label(self) -> None:
        with self.assertRaises(LabelMissing):
            steps.a_list_of_labels(_context())
        ctx = _context(make_submission(labels=["release-v1.30"]))
        self.assertIsNone(steps.the_version_label_is_present(ctx, "release-"))
        with self.assertRaises(LabelMissing):
            steps.the_version_label_is_present(ctx, "tests-verified-")


class EvidenceStepsTest(unittest.TestCase):
    def test_failing_tests_are_listed_sorted(self) -> None:
        report = junit_report(passed=[REQUIRED_TESTS[0]], failed=[REQUIRED_TESTS[2], REQUIRED_TESTS[1]])
        ctx = _context(make_submission(files=submission_files(junit=report)))
        with self.assertRaises(EvidenceFailing) as raised:
            steps.the_tests_pass_and_are_successful(ctx)
        self.assertEqual(
            str(raised.exception),
            "it appears that there are failures in some tests: \n"
            f"    - {REQUIRED_TESTS[1]}\n    - {REQUIRED_TESTS[2]}",
        )
        self.assertEqual(ctx.labels, [BASE_LABEL, "evidence-missing"])

    def test_passing_tests_label(self) -> None:
        ctx = _context()
        steps.the_tests_pass_and_are_successful(ctx)
        self.assertEqual(ctx.labels, [BASE_LABEL, "no-failed-tests-v1.30"])

    def test_required_tests_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = write_metadata(Path(tmpdir))
            report = junit_report(passed=list(REQUIRED_TESTS[:2]))
            ctx = _context(make_submission(files=submission_files(junit=report)), metadata_root=root)
            with self.assertRaises(RequiredTestsMissing) as raised:
                steps.all_required_tests_are_present(ctx)
            self.assertEqual(
                str(raised.exception), f"the following test(s) are missing: \n    - {REQUIRED_TESTS[2]}"
            )
            self.assertEqual(ctx.labels, [BASE_LABEL, "required-tests-missing"])

    def test_required_tests_verified(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            entries = manifest_entries(REQUIRED_TESTS) + manifest_entries(
                ["[sig-node] Not yet required [Conformance]"], release="v1.31"
            )
            root = write_metadata(Path(tmpdir), manifests={"v1.30": entries})
            ctx = _context(metadata_root=root)
            self.assertIsNone(steps.all_required_tests_are_present(ctx))
            self.assertEqual(ctx.labels, [BASE_LABEL, "tests-verified-v1.30"])

    def test_required_tests_without_manifest(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            ctx = _context(metadata_root=Path(tmpdir))
            with self.assertRaises(MetadataUnavailable):
                steps.all_required_tests_are_present(ctx)


if __name__ == "__main__":
    unittest.main()
