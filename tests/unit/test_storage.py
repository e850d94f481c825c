"""Unit tests for the in-memory store."""

import threading

import pytest

from models import AnalysisJob, DebugFix, DebugSession, Metrics, Review, StoredIssue, UserSettings
from storage import InvalidTransitionError, NotFoundError


def make_job(store, user_id: str = "u1") -> AnalysisJob:
    repository = store.get_or_create_repository(user_id, "acme", "widgets")
    return store.create_job(
        AnalysisJob(
            repository_id=repository.id,
            owner="acme",
            repo="widgets",
            user_id=user_id,
            provider="openai",
            status="analyzing",
        )
    )


def make_session(store, total: int = 2) -> DebugSession:
    return store.create_session(
        DebugSession(user_id="u1", owner="acme", repo="widgets", session_name="s", total_issues=total)
    )


def make_fix(store, session_id: str) -> DebugFix:
    return store.create_fix(
        DebugFix(
            session_id=session_id,
            issue_title="t",
            issue_description="d",
            status="generating",
        )
    )


class TestRepositories:
    """Tests for get_or_create_repository."""

    def test_same_owner_and_name_is_reused(self, store) -> None:
        """Test one repository row per user and full name."""
        first = store.get_or_create_repository("u1", "acme", "widgets")
        second = store.get_or_create_repository("u1", "acme", "widgets")
        other_user = store.get_or_create_repository("u2", "acme", "widgets")

        assert first.id == second.id
        assert first.full_name == "acme/widgets"
        assert other_user.id != first.id


class TestJobs:
    """Tests for analysis job records."""

    def test_progress_is_monotonic(self, store) -> None:
        """Test files_analyzed cannot go down or pass total_files."""
        job = make_job(store)
        store.patch_job(job.id, total_files=5)
        store.patch_job(job.id, files_analyzed=3)

        with pytest.raises(ValueError, match="cannot decrease"):
            store.patch_job(job.id, files_analyzed=2)
        with pytest.raises(ValueError, match="exceeds"):
            store.patch_job(job.id, files_analyzed=6)
        assert store.get_job(job.id).files_analyzed == 3

    def test_terminal_status_is_final(self, store) -> None:
        """Test a completed job cannot be failed afterwards."""
        job = make_job(store)
        store.patch_job(job.id, status="completed")

        with pytest.raises(InvalidTransitionError):
            store.patch_job(job.id, status="failed")

    def test_reads_are_copies(self, store) -> None:
        """Test mutating a returned record does not change the store."""
        job = make_job(store)

        fetched = store.get_job(job.id)
        fetched.recommendations.append("edited")

        assert store.get_job(job.id).recommendations == []

    def test_unknown_id(self, store) -> None:
        """Test missing records raise NotFoundError."""
        with pytest.raises(NotFoundError):
            store.get_job("missing")
        with pytest.raises(NotFoundError):
            store.patch_job("missing", status="failed")

    def test_list_newest_first(self, store) -> None:
        """Test jobs are listed newest first and limited per user."""
        jobs = [make_job(store) for _ in range(3)]
        make_job(store, user_id="u2")

        listed = store.list_jobs("u1", limit=2)

        assert [j.id for j in listed] == [jobs[2].id, jobs[1].id]


class TestIssues:
    """Tests for issue records."""

    def test_issue_needs_exactly_one_parent(self, store) -> None:
        """Test orphaned and doubly-owned issues are rejected."""
        with pytest.raises(ValueError):
            store.add_issues([StoredIssue(description="x")])
        with pytest.raises(ValueError):
            store.add_issues([StoredIssue(description="x", analysis_id="a", review_id="r")])

    def test_filter_by_parent(self, store) -> None:
        """Test issues are listed per analysis or per review."""
        store.add_issues(
            [
                StoredIssue(description="one", analysis_id="a1"),
                StoredIssue(description="two", review_id="r1"),
                StoredIssue(description="three", analysis_id="a1"),
            ]
        )

        assert [i.description for i in store.list_issues(analysis_id="a1")] == ["one", "three"]
        assert [i.description for i in store.list_issues(review_id="r1")] == ["two"]


class TestReviews:
    """Tests for review records."""

    def test_lifecycle_and_metrics(self, store) -> None:
        """Test a review moves forward and keeps its metrics."""
        review = store.create_review(
            Review(user_id="u1", repository_id="r", pr_number=7, pr_title="t", pr_url="u", status="analyzing")
        )
        store.patch_review(review.id, status="completed", recommendation="APPROVE")
        store.create_metrics(
            Metrics(review_id=review.id, files_changed=1, analysis_time_ms=5, ai_tokens_used=10)
        )

        assert store.get_review(review.id).recommendation == "APPROVE"
        assert store.get_metrics(review.id).ai_tokens_used == 10
        assert store.get_metrics("other") is None
        with pytest.raises(InvalidTransitionError):
            store.patch_review(review.id, status="analyzing")


class TestSettings:
    """Tests for settings records."""

    def test_missing_then_saved(self, store) -> None:
        """Test settings are absent until saved."""
        assert store.get_settings("u1") is None

        store.save_settings(UserSettings(user_id="u1", provider="claude"))

        assert store.get_settings("u1").provider == "claude"


class TestDebugFixes:
    """Tests for sessions and fixes."""

    def test_fix_needs_existing_session(self, store) -> None:
        """Test a fix cannot point at an unknown session."""
        with pytest.raises(NotFoundError):
            make_fix(store, "missing")

    def test_complete_fix_is_idempotent(self, store) -> None:
        """Test completing the same fix twice counts it once."""
        session = make_session(store)
        fix = make_fix(store, session.id)

        assert store.complete_fix(fix.id, fixed_code="ok") is True
        assert store.complete_fix(fix.id, fixed_code="again") is False

        assert store.get_session(session.id).fixed_issues == 1
        stored = store.get_fix(fix.id)
        assert stored.status == "completed"
        assert stored.fixed_code == "ok"
        assert stored.completed_at is not None

    def test_fixed_never_exceeds_total(self, store) -> None:
        """Test fixed_issues is capped at total_issues."""
        session = make_session(store, total=1)
        fixes = [make_fix(store, session.id) for _ in range(3)]

        for fix in fixes:
            store.complete_fix(fix.id)

        assert store.get_session(session.id).fixed_issues == 1

    def test_concurrent_completion_counts_once(self, store) -> None:
        """Test racing completions of one fix increment exactly once."""
        session = make_session(store, total=5)
        fix = make_fix(store, session.id)
        results = []

        def complete() -> None:
            results.append(store.complete_fix(fix.id))

        threads = [threading.Thread(target=complete) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert store.get_session(session.id).fixed_issues == 1

    def test_add_session_issue(self, store) -> None:
        """Test a session's total grows by one per added issue."""
        session = make_session(store, total=1)

        store.add_session_issue(session.id)

        assert store.get_session(session.id).total_issues == 2

    def test_session_cannot_go_back(self, store) -> None:
        """Test a pushed session stays pushed."""
        session = make_session(store)
        store.patch_session(session.id, status="ready")
        store.patch_session(session.id, status="pushed")

        with pytest.raises(InvalidTransitionError):
            store.patch_session(session.id, status="generating")
