"""Tests for ground-truth inference."""

import json

from review_engine.models import (
    EvaluationStatus,
    MatchSetting,
    PeerReviewVote,
    Submission,
    SubmissionStatus,
    VoteType,
)
from review_engine.services.execution import FakeExecutionClient
from review_engine.services.truth import (
    ProblemGroup,
    ReviewedSubmission,
    TruthEngine,
    teacher_test_counts,
)

REVERSE = "reverse"
BROKEN = "broken"
PASSING = [{"passed": True}, {"passed": True}]


def _reverse(test_input: str) -> str:
    return json.dumps(list(reversed(json.loads(test_input))))


def _crash(test_input: str) -> str:
    raise RuntimeError("segfault")


def _submission(code: str, results=PASSING, sid: str | None = None) -> Submission:
    submission = Submission(
        match_id="m",
        participant_id="p",
        code=code,
        status=SubmissionStatus.PROBABLY_CORRECT,
        is_final=True,
        private_test_results=results,
    )
    if sid:
        submission.id = sid
    return submission


def _incorrect(test_input: str, expected: str) -> PeerReviewVote:
    return PeerReviewVote(
        assignment_id="a",
        vote=VoteType.INCORRECT,
        test_case_input=test_input,
        expected_output=expected,
    )


def _correct() -> PeerReviewVote:
    return PeerReviewVote(assignment_id="a", vote=VoteType.CORRECT)


def _group(*reviewed: ReviewedSubmission, reference: str | None = REVERSE, sid="ms1"):
    setting = MatchSetting(
        challenge_id="c", reference_solution=reference, language="python", public_tests=[]
    )
    setting.id = sid
    return ProblemGroup(sid, setting, list(reviewed))


def _client(**programs) -> FakeExecutionClient:
    return FakeExecutionClient(
        programs={REVERSE: _reverse, "crash": _crash, **programs},
        uncompilable=[BROKEN],
    )


class TestTeacherTestCounts:
    """Tests for teacher_test_counts."""

    def test_counts_passed(self):
        """Test passed and total are counted."""
        assert teacher_test_counts([{"passed": True}, {"passed": False}]) == (1, 2)

    def test_parses_json_text(self):
        """Test results stored as JSON text are accepted."""
        assert teacher_test_counts('[{"passed": true}]') == (1, 1)

    def test_malformed(self):
        """Test missing or malformed results count as nothing passed."""
        assert teacher_test_counts(None) == (0, 0)
        assert teacher_test_counts("not json") == (0, 0)
        assert teacher_test_counts({"passed": True}) == (0, 0)


class TestTruthEngine:
    """Tests for TruthEngine.resolve."""

    async def test_counter_example_proves_bug(self):
        """Test a valid counter-example the submission fails makes it incorrect."""
        vote = _incorrect("[1,2,3]", "[3,2,1]")
        submission = _submission("identity")
        group = _group(ReviewedSubmission(submission, [vote]))

        report = await TruthEngine(_client()).resolve([group])

        assert vote.reference_output == "[3, 2, 1]"
        assert vote.is_expected_output_correct is True
        assert vote.actual_output == "[1,2,3]"
        assert vote.is_bug_proven is True
        assert vote.is_vote_correct is True
        assert vote.evaluation_status == EvaluationStatus.BUG_PROVEN
        truth = report.submissions[submission.id]
        assert truth.valid_counter_examples == 1
        assert truth.proven_killer_tests == 1
        assert truth.is_ultimately_correct is False

    async def test_wrong_expected_output_is_invalid(self):
        """Test a counter-example whose claimed output disagrees with the reference."""
        vote = _incorrect("[1,2,3]", "[1,2,3]")
        submission = _submission(REVERSE)
        group = _group(ReviewedSubmission(submission, [vote]))

        report = await TruthEngine(_client()).resolve([group])

        assert vote.is_expected_output_correct is False
        assert vote.is_vote_correct is False
        assert vote.evaluation_status == EvaluationStatus.INVALID_OUTPUT
        assert report.is_correct(submission.id) is True
        assert report.submissions[submission.id].valid_counter_examples == 0

    async def test_valid_counter_example_without_bug(self):
        """Test a correct submission survives a valid counter-example."""
        incorrect = _incorrect("[4,5]", "[5, 4]")
        correct = _correct()
        submission = _submission(REVERSE)
        group = _group(ReviewedSubmission(submission, [incorrect, correct]))

        report = await TruthEngine(_client()).resolve([group])

        assert incorrect.evaluation_status == EvaluationStatus.NO_BUG
        assert incorrect.is_bug_proven is False
        assert incorrect.is_vote_correct is False
        assert correct.is_vote_correct is True
        assert report.is_correct(submission.id) is True

    async def test_correct_vote_on_failing_teacher_tests(self):
        """Test a CORRECT vote is wrong when teacher tests failed."""
        vote = _correct()
        submission = _submission(REVERSE, results=[{"passed": False}])
        group = _group(ReviewedSubmission(submission, [vote]))

        report = await TruthEngine(_client()).resolve([group])

        assert report.is_correct(submission.id) is False
        assert vote.is_vote_correct is False

    async def test_unparseable_input_is_invalid_without_execution(self):
        """Test a non-array input is rejected before any execution."""
        vote = _incorrect("1 2 3", "[3,2,1]")
        client = _client()
        group = _group(ReviewedSubmission(_submission(REVERSE), [vote]))

        await TruthEngine(client).resolve([group])

        assert vote.evaluation_status == EvaluationStatus.INVALID_OUTPUT
        assert client.calls == []

    async def test_broken_reference_leaves_unparseable_input_unresolved(self):
        """Test no counter-example is judged when the reference does not compile."""
        unparseable = _incorrect("1 2 3", "[3,2,1]")
        parseable = _incorrect("[1,2]", "[2,1]")
        group = _group(
            ReviewedSubmission(_submission("identity"), [unparseable, parseable]),
            reference=BROKEN,
        )

        report = await TruthEngine(_client()).resolve([group])

        assert report.failed_groups == [group.match_setting_id]
        for vote in (unparseable, parseable):
            assert vote.evaluation_status is None
            assert vote.is_expected_output_correct is None
            assert vote.is_vote_correct is None

    async def test_unavailable_reference_leaves_unparseable_input_unresolved(self):
        """Test an execution outage on the reference leaves every vote untouched."""
        unparseable = _incorrect("not an array", "[]")
        parseable = _incorrect("[1,2]", "[2,1]")
        client = FakeExecutionClient(programs={}, unavailable=[REVERSE])
        group = _group(ReviewedSubmission(_submission("identity"), [unparseable, parseable]))

        report = await TruthEngine(client).resolve([group])

        assert report.failed_groups == [group.match_setting_id]
        assert unparseable.evaluation_status is None
        assert parseable.evaluation_status is None

    async def test_unparseable_input_rejected_alongside_valid_one(self):
        """Test only parseable inputs reach the reference; the rest are invalid."""
        unparseable = _incorrect("1 2", "[2,1]")
        parseable = _incorrect("[1,2]", "[2,1]")
        client = _client()
        group = _group(ReviewedSubmission(_submission("identity"), [unparseable, parseable]))

        await TruthEngine(client).resolve([group])

        assert unparseable.evaluation_status == EvaluationStatus.INVALID_OUTPUT
        assert parseable.evaluation_status == EvaluationStatus.BUG_PROVEN
        reference_code, _, cases = client.calls[0]
        assert reference_code == REVERSE
        assert len(cases) == 1

    async def test_undetectable_language_uses_engine_default(self):
        """Test a reference with no recognizable syntax runs in the configured language."""
        vote = _incorrect("[1,2]", "[2,1]")
        setting = MatchSetting(challenge_id="c", reference_solution=REVERSE, public_tests=[])
        group = ProblemGroup("ms1", setting, [ReviewedSubmission(_submission("identity"), [vote])])
        client = _client()

        await TruthEngine(client, default_language="python").resolve([group])

        assert client.calls
        assert {language for _, language, _ in client.calls} == {"python"}

    async def test_abstain_and_correct_votes_on_proven_bug(self):
        """Test ABSTAIN votes stay unjudged and CORRECT votes lose to a proven bug."""
        killer = _incorrect("[1,2,3]", "[3,2,1]")
        abstains = [PeerReviewVote(assignment_id="a", vote=VoteType.ABSTAIN) for _ in range(3)]
        corrects = [_correct() for _ in range(2)]
        submission = _submission("identity")
        group = _group(ReviewedSubmission(submission, [*abstains, killer, *corrects]))

        report = await TruthEngine(_client()).resolve([group])

        truth = report.submissions[submission.id]
        assert truth.is_ultimately_correct is False
        assert truth.proven_killer_tests == 1
        assert killer.is_vote_correct is True
        for vote in corrects:
            assert vote.is_vote_correct is False
        for vote in abstains:
            assert vote.evaluation_status is None
            assert vote.is_vote_correct is None
            assert vote.is_bug_proven is None
            assert vote.reference_output is None
            assert vote.actual_output is None

    async def test_runtime_error_proves_bug(self):
        """Test a crash on a valid input counts as a proven bug."""
        vote = _incorrect("[1,2]", "[2,1]")
        submission = _submission("crash")
        group = _group(ReviewedSubmission(submission, [vote]))

        report = await TruthEngine(_client()).resolve([group])

        assert vote.evaluation_status == EvaluationStatus.RUNTIME_ERROR
        assert vote.is_bug_proven is True
        assert report.is_correct(submission.id) is False

    async def test_timeout_proves_bug(self):
        """Test a timed-out run counts as a proven bug."""
        vote = _incorrect("[1,2]", "[2,1]")
        submission = _submission("slow")
        client = _client(slow=lambda _: ("", 124))
        group = _group(ReviewedSubmission(submission, [vote]))

        await TruthEngine(client).resolve([group])

        assert vote.evaluation_status == EvaluationStatus.TIMEOUT

    async def test_compile_error_proves_bug(self):
        """Test a submission that does not compile fails every valid counter-example."""
        vote = _incorrect("[1,2]", "[2,1]")
        submission = _submission(BROKEN)
        group = _group(ReviewedSubmission(submission, [vote]))

        report = await TruthEngine(_client()).resolve([group])

        assert vote.evaluation_status == EvaluationStatus.COMPILE_ERROR
        assert report.submissions[submission.id].proven_killer_tests == 1

    async def test_duplicate_inputs_counted_once(self):
        """Test distinct killer tests are counted by normalized input."""
        first = _incorrect("[1,2,3]", "[3,2,1]")
        second = _incorrect("[1, 2, 3]", "[3,2,1]")
        submission = _submission("identity")
        group = _group(ReviewedSubmission(submission, [first, second]))

        report = await TruthEngine(_client()).resolve([group])

        truth = report.submissions[submission.id]
        assert truth.valid_counter_examples == 1
        assert truth.proven_killer_tests == 1

    async def test_reference_failure_isolated_to_its_group(self):
        """Test a broken reference leaves only its own group unresolved."""
        broken_vote = _incorrect("[1,2]", "[2,1]")
        broken_group = _group(
            ReviewedSubmission(_submission("identity"), [broken_vote]),
            reference=BROKEN,
            sid="ms-broken",
        )
        good_vote = _incorrect("[1,2]", "[2,1]")
        good_submission = _submission("identity")
        good_group = _group(ReviewedSubmission(good_submission, [good_vote]), sid="ms-good")

        report = await TruthEngine(_client()).resolve([broken_group, good_group])

        assert report.failed_groups == ["ms-broken"]
        assert broken_vote.is_expected_output_correct is None
        assert broken_vote.evaluation_status is None
        assert good_vote.evaluation_status == EvaluationStatus.BUG_PROVEN
        assert report.is_correct(good_submission.id) is False

    async def test_missing_reference_leaves_votes_unresolved(self):
        """Test a group without a reference solution cannot validate counter-examples."""
        vote = _incorrect("[1,2]", "[2,1]")
        submission = _submission("identity")
        group = _group(ReviewedSubmission(submission, [vote]), reference=None)

        report = await TruthEngine(_client()).resolve([group])

        assert report.failed_groups == [group.match_setting_id]
        assert vote.is_vote_correct is None
        assert report.is_correct(submission.id) is True

    async def test_submission_execution_failure_leaves_votes_unresolved(self):
        """Test an unavailable execution service for one submission is contained."""
        vote = _incorrect("[1,2]", "[2,1]")
        submission = _submission("flaky")
        client = FakeExecutionClient(programs={REVERSE: _reverse}, unavailable=["flaky"])
        group = _group(ReviewedSubmission(submission, [vote]))

        report = await TruthEngine(client).resolve([group])

        assert vote.is_expected_output_correct is True
        assert vote.is_bug_proven is None
        assert report.is_correct(submission.id) is True

    async def test_previous_evaluation_cleared(self):
        """Test stale derived fields are reset before resolving."""
        vote = _correct()
        vote.evaluation_status = EvaluationStatus.BUG_PROVEN
        vote.actual_output = "stale"
        group = _group(ReviewedSubmission(_submission(REVERSE), [vote]))

        await TruthEngine(_client()).resolve([group])

        assert vote.evaluation_status is None
        assert vote.actual_output is None
        assert vote.is_vote_correct is True

    async def test_deterministic(self):
        """Test resolving the same input twice gives the same verdicts."""

        def build():
            votes = [_incorrect("[1,2,3]", "[3,2,1]"), _correct()]
            submission = _submission("identity", sid="s1")
            return votes, _group(ReviewedSubmission(submission, votes))

        votes_a, group_a = build()
        votes_b, group_b = build()
        report_a = await TruthEngine(_client()).resolve([group_a])
        report_b = await TruthEngine(_client()).resolve([group_b])

        assert report_a.submissions == report_b.submissions
        assert [v.is_vote_correct for v in votes_a] == [v.is_vote_correct for v in votes_b]
