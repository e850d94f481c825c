"""Application facade: settings, background analysis jobs, reviews and fixes."""

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass

from analyzer import RepositoryAnalyzer
from config import USE_MOCK, validate_provider
from github_client import GitHubClient, SourceControl
from models import AnalysisJob, DebugFix, DebugSession, Issue, RepositoryContext, Review, StoredIssue, UserSettings
from providers import ProviderAdapter, ProviderConfig, Transport
from remediation import FileFix, FixOutcome, PushResult, Remediator
from reviewer import PullRequestReviewer
from storage import Store

logger = logging.getLogger(__name__)


@dataclass
class AnalysisStatus:
    """A job as seen by a poller, with its issues once they exist."""

    job: AnalysisJob
    issues: list[StoredIssue]


def _github_from_env(user_id: str) -> SourceControl:
    return GitHubClient.from_env()


class CodeReviewService:
    """
    Entry point used by the HTTP layer and the CLI.

    Credentials are looked up per user on every call and handed to a fresh
    ProviderAdapter; nothing provider-specific is kept on the service.
    """

    def __init__(
        self,
        store: Store,
        source_factory: Callable[[str], SourceControl] = _github_from_env,
        executor: Executor | None = None,
        transports: dict[str, Transport] | None = None,
        mock: bool = USE_MOCK,
        analyzer_options: dict | None = None,
    ):
        self.store = store
        self.source_factory = source_factory
        self.executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="analysis"
        )
        self.transports = transports
        self.mock = mock
        self.analyzer_options = analyzer_options or {}
        self._jobs: dict[str, Future] = {}

    # -----------------------------------------------------------------------
    # Settings
    # -----------------------------------------------------------------------
    def get_settings(self, user_id: str) -> UserSettings:
        """Return the user's settings, creating defaults on first access."""
        settings = self.store.get_settings(user_id)
        if settings is None:
            settings = self.store.save_settings(UserSettings(user_id=user_id))
            logger.info("Created default settings for %s", user_id)
        return settings

    def update_settings(
        self,
        user_id: str,
        provider: str | None = None,
        openai_key: str | None = None,
        anthropic_key: str | None = None,
        gemini_key: str | None = None,
    ) -> UserSettings:
        """Apply a partial update; empty values leave the stored value alone."""
        settings = self.get_settings(user_id)
        update = {}
        if provider:
            update["provider"] = validate_provider(provider)
        if openai_key:
            update["openai_key"] = openai_key
        if anthropic_key:
            update["anthropic_key"] = anthropic_key
        if gemini_key:
            update["gemini_key"] = gemini_key
        return self.store.save_settings(settings.model_copy(update=update))

    def provider_config_for(self, user_id: str, provider: str | None = None) -> ProviderConfig:
        if provider:
            validate_provider(provider)
        return ProviderConfig.from_settings(self.get_settings(user_id), provider)

    def adapter_for(self, user_id: str, provider: str | None = None) -> ProviderAdapter:
        return ProviderAdapter(
            self.provider_config_for(user_id, provider),
            transports=self.transports,
            mock=self.mock,
        )

    # -----------------------------------------------------------------------
    # Repository analysis
    # -----------------------------------------------------------------------
    def _analyzer(self, user_id: str, provider: str) -> RepositoryAnalyzer:
        return RepositoryAnalyzer(
            self.source_factory(user_id),
            self.adapter_for(user_id, provider),
            self.store,
            **self.analyzer_options,
        )

    def submit_repository_analysis(
        self, user_id: str, owner: str, repo: str, provider: str | None = None
    ) -> str:
        """
        Start a full-repository analysis and return its job id at once.

        The job runs on the executor; poll get_analysis for progress.
        """
        provider = validate_provider(provider or self.get_settings(user_id).provider)
        analyzer = self._analyzer(user_id, provider)
        job = analyzer.create_job(user_id, owner, repo, provider)

        future = self.executor.submit(analyzer.run, job)
        self._jobs[job.id] = future
        future.add_done_callback(lambda f: self._job_finished(job.id, f))
        return job.id

    def _job_finished(self, job_id: str, future: Future) -> None:
        self._jobs.pop(job_id, None)
        if future.exception() is not None:
            logger.warning("[Analysis %s] Finished with failure: %s", job_id, future.exception())

    def wait_for(self, job_id: str, timeout: float | None = None) -> AnalysisJob:
        """Block until a submitted job ends; returns the stored job either way."""
        future = self._jobs.get(job_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except Exception:
                logger.debug("[Analysis %s] Job raised", job_id, exc_info=True)
        return self.store.get_job(job_id)

    def get_analysis(self, job_id: str) -> AnalysisStatus:
        job = self.store.get_job(job_id)
        return AnalysisStatus(job=job, issues=self.store.list_issues(analysis_id=job_id))

    def list_analyses(self, user_id: str, limit: int = 10) -> list[AnalysisJob]:
        return self.store.list_jobs(user_id, limit)

    # -----------------------------------------------------------------------
    # Pull request review
    # -----------------------------------------------------------------------
    def review_pull_request(
        self,
        user_id: str,
        owner: str,
        repo: str,
        pr_number: int,
        provider: str | None = None,
        post: bool = True,
    ) -> Review:
        reviewer = PullRequestReviewer(
            self.source_factory(user_id), self.adapter_for(user_id, provider), self.store
        )
        return reviewer.review(user_id, owner, repo, pr_number, provider, post=post)

    def review_issues(self, review_id: str) -> list[StoredIssue]:
        return self.store.list_issues(review_id=review_id)

    # -----------------------------------------------------------------------
    # Remediation
    # -----------------------------------------------------------------------
    def _remediator(
        self, user_id: str, provider: str | None = None, with_source: bool = False
    ) -> Remediator:
        return Remediator(
            self.adapter_for(user_id, provider),
            self.store,
            source=self.source_factory(user_id) if with_source else None,
        )

    def debug_issue(
        self,
        user_id: str,
        issue: Issue,
        context: RepositoryContext,
        provider: str | None = None,
        session_id: str | None = None,
    ) -> FixOutcome:
        return self._remediator(user_id, provider).generate_fix(
            issue, context, user_id=user_id, provider=provider, session_id=session_id
        )

    def debug_code(
        self,
        user_id: str,
        code: str,
        error_message: str | None = None,
        language: str = "javascript",
        provider: str | None = None,
    ) -> FixOutcome:
        return self._remediator(user_id, provider).debug_snippet(
            code, error_message, language, provider
        )

    def push_fixes(
        self,
        user_id: str,
        context: RepositoryContext,
        fixes: Sequence[FileFix],
        session_id: str | None = None,
    ) -> PushResult:
        remediator = self._remediator(user_id, with_source=True)
        return remediator.push_fixes(
            context.owner,
            context.name,
            fixes,
            base_branch=context.branch,
            session_id=session_id,
        )

    def list_sessions(self, user_id: str, limit: int = 10) -> list[DebugSession]:
        return self.store.list_sessions(user_id, limit)

    def session_fixes(self, session_id: str) -> list[DebugFix]:
        self.store.get_session(session_id)
        return self.store.list_fixes(session_id)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
