"""Ground-truth inference from teacher tests and peer counter-examples.

For each problem (match setting) the engine:

1. runs every INCORRECT vote's counter-example input through the reference
   solution and keeps the ones whose claimed output matches (valid
   counter-examples);
2. runs each reviewed submission against its valid counter-examples; any
   failure proves a bug and makes the submission incorrect;
3. marks CORRECT votes right or wrong according to the resulting verdict.

Failures of the execution service are isolated: a broken reference solution
leaves its problem's counter-examples unresolved, a failing submission run
leaves that submission's votes unresolved. Other problems are unaffected.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from review_engine.models import (
    EvaluationStatus,
    MatchSetting,
    PeerReviewVote,
    Submission,
    VoteType,
)
from review_engine.services.execution import (
    TIMEOUT_EXIT_CODE,
    ExecutionClient,
    TestCase,
    TestResult,
    detect_language,
    normalize_output,
    parse_array,
)

logger = structlog.get_logger()


@dataclass
class ReviewedSubmission:
    """A final submission and the votes cast on its review assignments."""

    submission: Submission
    votes: list[PeerReviewVote] = field(default_factory=list)


@dataclass
class ProblemGroup:
    match_setting_id: str
    match_setting: MatchSetting | None
    submissions: list[ReviewedSubmission] = field(default_factory=list)


@dataclass
class SubmissionTruth:
    """Verdict for one submission.

    Attributes:
        passed_teacher: Every teacher test passed (and there was at least one).
        valid_counter_examples: Distinct valid counter-example inputs.
        proven_killer_tests: Distinct valid inputs on which the submission failed.
        is_ultimately_correct: passed_teacher and no proven bug.
    """

    submission_id: str
    passed_teacher: bool
    teacher_passed_count: int
    teacher_total: int
    valid_counter_examples: int = 0
    proven_killer_tests: int = 0
    is_ultimately_correct: bool = False


@dataclass
class TruthReport:
    submissions: dict[str, SubmissionTruth] = field(default_factory=dict)
    failed_groups: list[str] = field(default_factory=list)

    def is_correct(self, submission_id: str) -> bool:
        truth = self.submissions.get(submission_id)
        return truth.is_ultimately_correct if truth else False


def teacher_test_counts(private_test_results: object) -> tuple[int, int]:
    """(passed, total) from stored teacher test results; malformed data counts as none."""
    results = private_test_results
    if isinstance(results, str):
        try:
            results = json.loads(results)
        except ValueError:
            return 0, 0
    if not isinstance(results, list):
        return 0, 0
    passed = sum(1 for r in results if isinstance(r, dict) and r.get("passed") is True)
    return passed, len(results)


def _classify(compiled: bool, result: TestResult | None, reference_output: str | None):
    if not compiled:
        return EvaluationStatus.COMPILE_ERROR
    if result is None:
        return EvaluationStatus.RUNTIME_ERROR
    if result.exit_code == TIMEOUT_EXIT_CODE:
        return EvaluationStatus.TIMEOUT
    if result.exit_code != 0:
        return EvaluationStatus.RUNTIME_ERROR
    if normalize_output(result.actual_output) != normalize_output(reference_output):
        return EvaluationStatus.BUG_PROVEN
    return EvaluationStatus.NO_BUG


class TruthEngine:
    """Resolve ground truth and annotate votes for one scoring pass."""

    def __init__(self, client: ExecutionClient, default_language: str = "cpp") -> None:
        self.client = client
        self.default_language = default_language

    async def resolve(self, groups: Sequence[ProblemGroup]) -> TruthReport:
        report = TruthReport()
        for group in groups:
            for reviewed in group.submissions:
                for vote in reviewed.votes:
                    vote.clear_evaluation()

            language = self._language_for(group.match_setting)
            reference_ok = await self._check_reference(group, language)
            if not reference_ok:
                report.failed_groups.append(group.match_setting_id)

            for reviewed in group.submissions:
                truth = await self._resolve_submission(reviewed, language)
                report.submissions[reviewed.submission.id] = truth
                for vote in reviewed.votes:
                    if vote.vote == VoteType.CORRECT:
                        vote.is_vote_correct = truth.is_ultimately_correct

        logger.info(
            "truth_resolved",
            submissions=len(report.submissions),
            correct=sum(1 for t in report.submissions.values() if t.is_ultimately_correct),
            failed_groups=len(report.failed_groups),
        )
        return report

    def _language_for(self, setting: MatchSetting | None) -> str:
        if setting is not None and setting.language:
            return setting.language
        reference = setting.reference_solution if setting else None
        if not reference:
            return self.default_language
        return detect_language(reference, self.default_language)

    async def _check_reference(self, group: ProblemGroup, language: str) -> bool:
        """Stage A: validate counter-examples against the reference solution.

        Returns False when the group's counter-examples could not be checked;
        none of its votes are touched then.
        """
        submitted = [
            vote
            for reviewed in group.submissions
            for vote in reviewed.votes
            if vote.vote == VoteType.INCORRECT and vote.test_case_input
        ]
        if not submitted:
            return True

        reference = group.match_setting.reference_solution if group.match_setting else None
        log = logger.bind(match_setting_id=group.match_setting_id, votes=len(submitted))
        if not reference:
            log.warning("reference_solution_missing")
            return False

        candidates = [v for v in submitted if parse_array(v.test_case_input) is not None]
        result = None
        if candidates:
            cases = [TestCase(v.test_case_input, v.expected_output) for v in candidates]
            try:
                result = await self.client.execute(reference, language, cases)
            except Exception as e:
                log.error("reference_execution_failed", error=str(e))
                return False
            if not result.is_compiled:
                log.error("reference_compile_failed", error=result.compile_error)
                return False

        for vote in submitted:
            if parse_array(vote.test_case_input) is None:
                self._mark_invalid(vote)
        if result is None:
            return True

        for index, vote in enumerate(candidates):
            run = result.test_results[index] if index < len(result.test_results) else None
            if run is None or run.exit_code != 0:
                vote.reference_output = run.actual_output if run else None
                self._mark_invalid(vote)
                continue
            vote.reference_output = run.actual_output
            vote.is_expected_output_correct = normalize_output(
                vote.expected_output
            ) == normalize_output(run.actual_output)
            if not vote.is_expected_output_correct:
                self._mark_invalid(vote)
        return True

    @staticmethod
    def _mark_invalid(vote: PeerReviewVote) -> None:
        vote.is_expected_output_correct = False
        vote.is_bug_proven = False
        vote.is_vote_correct = False
        vote.evaluation_status = EvaluationStatus.INVALID_OUTPUT

    async def _resolve_submission(self, reviewed: ReviewedSubmission, language: str):
        """Stage B: ground truth for one submission."""
        submission = reviewed.submission
        passed, total = teacher_test_counts(submission.private_test_results)
        truth = SubmissionTruth(
            submission_id=submission.id,
            passed_teacher=total > 0 and passed == total,
            teacher_passed_count=passed,
            teacher_total=total,
        )

        valid = [
            v
            for v in reviewed.votes
            if v.vote == VoteType.INCORRECT and v.is_expected_output_correct is True
        ]
        truth.valid_counter_examples = len({normalize_output(v.test_case_input) for v in valid})

        proven_inputs: set[str] = set()
        if valid:
            cases = [TestCase(v.test_case_input, v.reference_output) for v in valid]
            try:
                result = await self.client.execute(submission.code, language, cases)
            except Exception as e:
                logger.error(
                    "submission_execution_failed", submission_id=submission.id, error=str(e)
                )
                result = None

            if result is not None:
                for index, vote in enumerate(valid):
                    run = result.test_results[index] if index < len(result.test_results) else None
                    status = _classify(result.is_compiled, run, vote.reference_output)
                    vote.actual_output = run.actual_output if run else None
                    vote.evaluation_status = status
                    vote.is_bug_proven = status != EvaluationStatus.NO_BUG
                    vote.is_vote_correct = vote.is_bug_proven
                    if vote.is_bug_proven:
                        proven_inputs.add(normalize_output(vote.test_case_input))

        truth.proven_killer_tests = len(proven_inputs)
        truth.is_ultimately_correct = truth.passed_teacher and not proven_inputs
        return truth
