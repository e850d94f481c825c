"""Unit tests for diff line mapping and the pull request review flow."""

import math

import pytest

import reviewer
from diff_parser import build_line_mapping, find_nearest_valid_line, map_issues_to_comments
from github_client import ChangedFile
from models import CanonicalResult, Issue
from providers import ProviderRequestError
from reviewer import PullRequestReviewer, build_submission, format_issue_comment, format_review_body

DIFF = (
    "diff --git a/src/stats.py b/src/stats.py\n"
    "index 1111111..2222222 100644\n"
    "--- a/src/stats.py\n"
    "+++ b/src/stats.py\n"
    "@@ -1,3 +1,5 @@\n"
    " def avg(xs):\n"
    "-    return sum(xs) / len(xs)\n"
    "+    if not xs:\n"
    "+        return 0\n"
    "+    return sum(xs) / len(xs)\n"
    " \n"
)


def finding(line: int | None, file: str = "src/stats.py", severity: str = "HIGH") -> Issue:
    return Issue(severity=severity, category="bug", file=file, line=line, description="div by zero")


class TestDiffMapping:
    """Tests for mapping findings onto diff lines."""

    def test_added_and_context_lines_are_valid(self) -> None:
        """Test the new-file line numbers of the hunk are collected."""
        mapping = build_line_mapping(DIFF)["src/stats.py"]

        assert mapping.valid_lines == {1, 2, 3, 4, 5}

    def test_nearest_line(self) -> None:
        """Test out-of-hunk lines snap to the closest valid line within range."""
        mapping = build_line_mapping(DIFF)["src/stats.py"]

        assert find_nearest_valid_line(mapping, 3) == 3
        assert find_nearest_valid_line(mapping, 9) == 5
        assert find_nearest_valid_line(mapping, 11) is None

    def test_unplaceable_findings(self) -> None:
        """Test findings without a line, outside the diff or too far away are kept aside."""
        issues = [finding(3), finding(None), finding(2, file="other.py"), finding(40)]

        comments, unmapped = map_issues_to_comments(
            issues, build_line_mapping(DIFF), format_issue_comment
        )

        assert [(c.path, c.line) for c in comments] == [("src/stats.py", 3)]
        assert len(unmapped) == 3

    def test_garbage_diff(self) -> None:
        """Test an unparseable diff yields no mapping."""
        assert build_line_mapping("@@ this is not a diff") == {}


class TestFormatting:
    """Tests for review body and submission formatting."""

    def test_body_groups_by_severity(self) -> None:
        """Test the summary lists findings under their severity heading."""
        analysis = CanonicalResult(
            overall_assessment="Needs a guard.",
            complexity_score=2,
            issues=[finding(3), finding(4, severity="LOW")],
            positive_points=["small function"],
            recommendation="REQUEST_CHANGES",
        )

        body = format_review_body(analysis)

        assert body.startswith("## 🤖 RepoLens Review")
        assert "#### 🟠 HIGH (1)" in body
        assert "#### 🔵 LOW (1)" in body
        assert "- small function" in body
        assert "**Recommendation:** REQUEST_CHANGES" in body

    def test_clean_body(self) -> None:
        """Test a result without findings says so."""
        assert "No issues found" in format_review_body(CanonicalResult(recommendation="APPROVE"))

    def test_submission_uses_recommendation(self) -> None:
        """Test the review event follows the recommendation."""
        analysis = CanonicalResult(issues=[finding(3)], recommendation="REQUEST_CHANGES")

        submission = build_submission(analysis, DIFF)

        assert submission.event == "REQUEST_CHANGES"
        assert [c.line for c in submission.comments] == [3]


class TestPullRequestReviewer:
    """Tests for PullRequestReviewer.review."""

    @pytest.fixture
    def pr_source(self, source):
        source.diff = DIFF
        source.changed_files = [ChangedFile("src/stats.py", "modified", 3, 1, 4, None)]
        return source

    def test_review_end_to_end(
        self, pr_source, adapter, store, transports, analysis_json, issue_dict
    ) -> None:
        """Test the PR is analysed, posted and recorded."""
        transports["openai"].responses = [
            analysis_json(
                issues=[issue_dict(severity="HIGH", file="src/stats.py", line=3)],
                recommendation="REQUEST_CHANGES",
            )
        ]

        review = PullRequestReviewer(pr_source, adapter, store).review("u1", "acme", "widgets", 7)

        assert review.status == "completed"
        assert review.pr_title == "Add stats helper"
        assert review.pr_url == "https://github.com/acme/widgets/pull/7"
        assert review.recommendation == "REQUEST_CHANGES"

        [posted] = pr_source.posted
        assert posted.event == "REQUEST_CHANGES"
        assert [(c.path, c.line) for c in posted.comments] == [("src/stats.py", 3)]
        assert "LANGUAGE: Python" in transports["openai"].prompts[0]

        assert [i.severity for i in store.list_issues(review_id=review.id)] == ["HIGH"]
        metrics = store.get_metrics(review.id)
        assert (metrics.files_changed, metrics.lines_added, metrics.lines_deleted) == (1, 4, 1)
        assert metrics.ai_tokens_used == math.ceil(len(DIFF) / 4)

    def test_dry_run_does_not_post(self, pr_source, adapter, store) -> None:
        """Test post=False records the review without touching the PR."""
        review = PullRequestReviewer(pr_source, adapter, store).review(
            "u1", "acme", "widgets", 7, post=False
        )

        assert review.status == "completed"
        assert pr_source.posted == []

    def test_empty_diff_skips_provider(self, source, adapter, store, transports) -> None:
        """Test a PR without changes is approved without an AI call."""
        review = PullRequestReviewer(source, adapter, store).review("u1", "acme", "widgets", 7)

        assert review.recommendation == "APPROVE"
        assert transports["openai"].calls == 0

    def test_large_diff_is_chunked_and_merged(
        self, pr_source, adapter, store, transports, analysis_json, monkeypatch
    ) -> None:
        """Test each chunk is analysed and the strictest recommendation wins."""
        monkeypatch.setattr(reviewer, "MAX_DIFF_CHARS", 80)
        transports["openai"].responses = [
            analysis_json(recommendation="REQUEST_CHANGES", assessment="first"),
            analysis_json(recommendation="APPROVE", assessment="rest"),
        ]

        review = PullRequestReviewer(pr_source, adapter, store).review("u1", "acme", "widgets", 7)

        assert transports["openai"].calls > 1
        assert review.recommendation == "REQUEST_CHANGES"
        assert review.overall_assessment.startswith("first rest")

    def test_failure_is_recorded(self, pr_source, adapter, store, transports) -> None:
        """Test a failed analysis marks the review failed and propagates."""
        for transport in transports.values():
            transport.error = RuntimeError("service unavailable")

        with pytest.raises(ProviderRequestError):
            PullRequestReviewer(pr_source, adapter, store).review("u1", "acme", "widgets", 7)

        [review] = store.list_reviews("u1")
        assert review.status == "failed"
        assert "service unavailable" in review.failure_reason
        assert pr_source.posted == []
