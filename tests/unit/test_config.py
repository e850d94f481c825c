"""Unit tests for configuration helpers and the GitHub review fallback."""

from unittest.mock import MagicMock, patch

import pytest

from config import validate_provider, validate_repo, with_retry
from github_client import GitHubClient, ReviewComment, ReviewSubmission, inline_fallback_body


class TestValidation:
    """Tests for input validation helpers."""

    @pytest.mark.parametrize("repo", ["octocat/hello-world", "a.b/c_d"])
    def test_valid_repo(self, repo: str) -> None:
        """Test owner/repo strings pass through unchanged."""
        assert validate_repo(repo) == repo

    @pytest.mark.parametrize("repo", ["octocat", "a/b/c", "owner/ repo", ""])
    def test_invalid_repo(self, repo: str) -> None:
        """Test malformed repository names are rejected."""
        with pytest.raises(ValueError, match="Invalid repo format"):
            validate_repo(repo)

    def test_provider(self) -> None:
        """Test only the three supported providers are accepted."""
        assert validate_provider("claude") == "claude"
        with pytest.raises(ValueError):
            validate_provider("Claude")


class TestWithRetry:
    """Tests for the with_retry decorator."""

    @staticmethod
    def flaky(outcomes: list):
        """A callable that raises or returns the next scripted outcome."""
        calls = []

        def fetch():
            calls.append(1)
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        return fetch, calls

    def test_retries_then_succeeds(self) -> None:
        """Test transient failures are retried with doubling delays."""
        fetch, _ = self.flaky([ConnectionError("reset"), ConnectionError("reset"), "ok"])
        wrapped = with_retry(max_retries=3, base_delay=0.5, retryable=(ConnectionError,))(fetch)

        with patch("config.time.sleep") as sleep:
            assert wrapped() == "ok"

        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_gives_up_with_last_error(self) -> None:
        """Test the final failure propagates after the last attempt."""
        fetch, calls = self.flaky([ConnectionError("down")])
        wrapped = with_retry(max_retries=2, retryable=(ConnectionError,))(fetch)

        with patch("config.time.sleep"), pytest.raises(ConnectionError, match="down"):
            wrapped()

        assert len(calls) == 2

    def test_other_errors_are_not_retried(self) -> None:
        """Test non-retryable errors surface immediately."""
        fetch, calls = self.flaky([KeyError("x")])
        wrapped = with_retry(retryable=(ConnectionError,))(fetch)

        with pytest.raises(KeyError):
            wrapped()

        assert len(calls) == 1


class TestReviewFallback:
    """Tests for GitHubClient.post_review_with_fallback."""

    @pytest.fixture
    def client(self) -> GitHubClient:
        with patch("github_client.Github"):
            return GitHubClient("token")

    @pytest.fixture
    def review(self) -> ReviewSubmission:
        return ReviewSubmission(
            body="## Summary",
            event="REQUEST_CHANGES",
            comments=[ReviewComment(path="src/a.py", line=3, body="Guard the input")],
        )

    def test_review_posted(self, client, review) -> None:
        """Test an accepted review does not fall back."""
        client.post_review = MagicMock(return_value=11)

        assert client.post_review_with_fallback("acme", "widgets", 7, review) == {
            "review_id": 11,
            "fallback": False,
        }

    def test_rejected_inline_comments_become_one_comment(self, client, review) -> None:
        """Test a rejected review is re-posted as a single PR comment."""
        client.post_review = MagicMock(side_effect=ValueError("line must be part of the diff"))
        client.post_pr_comment = MagicMock(return_value=22)

        result = client.post_review_with_fallback("acme", "widgets", 7, review)

        assert result == {"comment_id": 22, "fallback": True}
        body = client.post_pr_comment.call_args.args[3]
        assert body.startswith("## Summary")
        assert "**src/a.py** (line 3):\n> Guard the input" in body

    def test_no_inline_comments_no_fallback(self, client) -> None:
        """Test a plain review failure propagates."""
        client.post_review = MagicMock(side_effect=ValueError("forbidden"))

        with pytest.raises(ValueError, match="forbidden"):
            client.post_review_with_fallback("acme", "widgets", 7, ReviewSubmission(body="ok"))


def test_inline_fallback_body_without_summary() -> None:
    """Test the fallback body still lists comments when there is no summary."""
    body = inline_fallback_body(
        ReviewSubmission(comments=[ReviewComment(path="b.py", line=1, body="x")])
    )

    assert body.startswith("## Inline Comments")
