"""
RepoLens Analyzer - LangGraph-based full-repository analysis job

The job is a small state machine:

    prepare_files -> analyze_batch (once per batch) -> finalize
                 +-> finalize_empty (nothing to analyse)

Batch progress is a frozen JobProgress advanced by the pure ``advance``
function; after every transition the new progress is written to the store
in one checkpoint, so pollers can watch ``files_analyzed`` grow.
"""

import logging
import math
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace

from langgraph.graph import END, START, StateGraph

import config
from file_filter import chunk_files, filter_code_files
from github_client import BranchNotFoundError, FileTreeEntry, SourceControl
from models import AnalysisJob, CanonicalResult, Issue, Metrics, Review, StoredIssue, utcnow
from providers import ProviderAdapter
from scoring import (
    count_severities,
    generate_recommendations,
    merge_analyses,
    overall_score,
    summarize,
)
from storage import Store

logger = logging.getLogger(__name__)

ANALYSIS_TITLE = "Full Repository Analysis"
ANALYSIS_LANGUAGE = "Multiple"
EMPTY_SUMMARY = "No code files found to analyze in this repository."
EMPTY_RECOMMENDATIONS = ["Add code files to enable analysis"]

# GitHub truncates recursive trees past this many entries
TREE_ENTRY_LIMIT = 100_000
# prepare_files and finalize around the per-batch steps, plus one spare
FIXED_GRAPH_STEPS = 3


def graph_step_limit(batch_size: int, max_files: int = TREE_ENTRY_LIMIT) -> int:
    """LangGraph recursion limit for a job of up to *max_files* files."""
    return math.ceil(max_files / batch_size) + FIXED_GRAPH_STEPS


# =============================================================================
# PURE STATE MACHINE
# =============================================================================
@dataclass(frozen=True)
class BatchOutcome:
    """What one batch produced."""

    fetched: int  # files whose content was retrieved
    chars: int = 0  # characters sent to the provider
    result: CanonicalResult | None = None  # None when the batch was skipped


@dataclass(frozen=True)
class JobProgress:
    total_files: int
    total_batches: int
    files_analyzed: int = 0
    batch_index: int = 0
    analyzed_chars: int = 0
    results: tuple[CanonicalResult, ...] = ()

    @property
    def done(self) -> bool:
        return self.batch_index >= self.total_batches

    @property
    def issues(self) -> list[Issue]:
        return [issue for result in self.results for issue in result.issues]


def advance(progress: JobProgress, outcome: BatchOutcome) -> JobProgress:
    """Fold one batch outcome into the job progress."""
    if progress.done:
        raise ValueError("All batches already processed")

    files_analyzed = progress.files_analyzed + outcome.fetched
    if files_analyzed > progress.total_files:
        raise ValueError(
            f"files_analyzed {files_analyzed} exceeds total_files {progress.total_files}"
        )

    results = progress.results
    if outcome.result is not None:
        results = results + (outcome.result,)

    return replace(
        progress,
        files_analyzed=files_analyzed,
        batch_index=progress.batch_index + 1,
        analyzed_chars=progress.analyzed_chars + outcome.chars,
        results=results,
    )


# =============================================================================
# GRAPH STATE
# =============================================================================
@dataclass
class AnalysisState:
    """State that flows through the analysis graph."""

    job_id: str
    owner: str
    repo: str
    provider: str
    started_at: float

    batches: list[list[FileTreeEntry]] = field(default_factory=list)
    progress: JobProgress | None = None
    job: AnalysisJob | None = None


def combine_files(files: list[tuple[str, str]]) -> str:
    """Join fetched (path, content) pairs into one labelled text blob."""
    return "---\n\n".join(f"// File: {path}\n{content}\n\n" for path, content in files)


class RepositoryAnalyzer:
    """Runs full-repository analysis jobs against one source and store."""

    def __init__(
        self,
        source: SourceControl,
        adapter: ProviderAdapter,
        store: Store,
        batch_size: int = config.BATCH_SIZE,
        batch_delay: float = config.BATCH_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.adapter = adapter
        self.store = store
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.sleep = sleep
        self.step_limit = graph_step_limit(batch_size)
        self.graph = self._build_graph().compile()

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------
    def create_job(self, user_id: str, owner: str, repo: str, provider: str) -> AnalysisJob:
        """Resolve the repository record and open a job in ``analyzing``."""
        config.validate_provider(provider)
        repository = self.store.get_or_create_repository(user_id, owner, repo)
        job = self.store.create_job(
            AnalysisJob(
                repository_id=repository.id,
                owner=owner,
                repo=repo,
                user_id=user_id,
                provider=provider,
                status="analyzing",
            )
        )
        logger.info("[Analysis %s] Created for %s/%s using %s", job.id, owner, repo, provider)
        return job

    def run(self, job: AnalysisJob) -> AnalysisJob:
        """
        Drive *job* to a terminal state.

        Any exception is recorded on the job as ``failed`` with its message
        and then re-raised.
        """
        initial = AnalysisState(
            job_id=job.id,
            owner=job.owner,
            repo=job.repo,
            provider=job.provider,
            started_at=time.monotonic(),
        )
        try:
            final_state = self.graph.invoke(
                initial, config={"recursion_limit": self.step_limit}
            )
        except Exception as exc:
            logger.exception("[Analysis %s] Error during analysis", job.id)
            self.store.patch_job(
                job.id,
                status="failed",
                failure_reason=str(exc) or type(exc).__name__,
                completed_at=utcnow(),
            )
            raise

        return final_state["job"]

    def analyze_repository(
        self, user_id: str, owner: str, repo: str, provider: str
    ) -> AnalysisJob:
        return self.run(self.create_job(user_id, owner, repo, provider))

    # -----------------------------------------------------------------------
    # Side effects
    # -----------------------------------------------------------------------
    def checkpoint(self, job_id: str, progress: JobProgress) -> None:
        self.store.patch_job(job_id, files_analyzed=progress.files_analyzed)

    def _fetch_tree(self, owner: str, repo: str) -> list[FileTreeEntry]:
        branch = self.source.get_default_branch(owner, repo) or "main"
        try:
            return self.source.get_repository_tree(owner, repo, branch)
        except BranchNotFoundError:
            if branch == config.FALLBACK_BRANCH:
                raise
            logger.warning(
                "Branch %s not found for %s/%s, trying %s",
                branch,
                owner,
                repo,
                config.FALLBACK_BRANCH,
            )
            return self.source.get_repository_tree(owner, repo, config.FALLBACK_BRANCH)

    def _fetch_one(self, state: AnalysisState, path: str) -> tuple[str, str] | None:
        try:
            content = self.source.get_file_content(state.owner, state.repo, path)
        except Exception as e:
            logger.warning("[Analysis %s] Failed to fetch %s: %s", state.job_id, path, e)
            return None
        logger.info("[Analysis %s] Fetched %s (%d chars)", state.job_id, path, len(content))
        return path, content

    def _fetch_batch(
        self, state: AnalysisState, batch: list[FileTreeEntry]
    ) -> list[tuple[str, str]]:
        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            fetched = list(pool.map(lambda entry: self._fetch_one(state, entry.path), batch))
        return [item for item in fetched if item is not None]

    # -----------------------------------------------------------------------
    # Nodes
    # -----------------------------------------------------------------------
    def prepare_files(self, state: AnalysisState) -> dict:
        """
        Fetch and filter the repository tree.

        Reads: owner, repo
        Writes: batches, progress
        """
        tree = self._fetch_tree(state.owner, state.repo)
        logger.info("[Analysis %s] Found %d items in tree", state.job_id, len(tree))

        code_files = filter_code_files(tree)
        if len(code_files) > TREE_ENTRY_LIMIT:
            raise ValueError(
                f"{len(code_files)} code files exceed the {TREE_ENTRY_LIMIT} file limit"
            )
        batches = chunk_files(code_files, self.batch_size)

        # Visible to pollers before the first batch starts
        self.store.patch_job(state.job_id, total_files=len(code_files), files_analyzed=0)

        logger.info(
            "[Analysis %s] %d code files in %d batches",
            state.job_id,
            len(code_files),
            len(batches),
        )
        return {
            "batches": batches,
            "progress": JobProgress(total_files=len(code_files), total_batches=len(batches)),
        }

    def analyze_batch(self, state: AnalysisState) -> dict:
        """
        Fetch, analyse and checkpoint the next batch.

        Reads: batches, progress
        Writes: progress
        """
        progress = state.progress
        batch = state.batches[progress.batch_index]
        logger.info(
            "[Analysis %s] Processing batch %d/%d (%d files)",
            state.job_id,
            progress.batch_index + 1,
            progress.total_batches,
            len(batch),
        )

        files = self._fetch_batch(state, batch)
        logger.info(
            "[Analysis %s] Valid files in batch: %d/%d",
            state.job_id,
            len(files),
            len(batch),
        )

        if files:
            combined = combine_files(files)
            result = self.adapter.analyze(
                f"{state.owner}/{state.repo}",
                ANALYSIS_TITLE,
                combined,
                ANALYSIS_LANGUAGE,
                provider=state.provider,
            )
            logger.info(
                "[Analysis %s] AI found %d issues in batch", state.job_id, len(result.issues)
            )
            outcome = BatchOutcome(fetched=len(files), chars=len(combined), result=result)
        else:
            logger.warning(
                "[Analysis %s] No valid files in batch %d, skipping",
                state.job_id,
                progress.batch_index + 1,
            )
            outcome = BatchOutcome(fetched=0)

        progress = advance(progress, outcome)
        self.checkpoint(state.job_id, progress)

        if not progress.done:
            self.sleep(self.batch_delay)

        return {"progress": progress}

    def finalize(self, state: AnalysisState) -> dict:
        """
        Aggregate, persist the completed job and its linked review.

        Reads: progress
        Writes: job
        """
        progress = state.progress
        issues = progress.issues
        counts = count_severities(issues)
        score = overall_score(counts)
        recommendations = generate_recommendations(issues)

        logger.info(
            "[Analysis %s] Analysis complete. Files: %d, Issues: %d",
            state.job_id,
            progress.files_analyzed,
            len(issues),
        )

        self._record_review(state, progress, score)

        # The job's issues land together with their counts; a completed job
        # can no longer be marked failed
        if issues:
            self.store.add_issues(
                [StoredIssue(**issue.model_dump(), analysis_id=state.job_id) for issue in issues]
            )
        job = self.store.patch_job(
            state.job_id,
            status="completed",
            overall_score=score,
            total_issues=counts.total,
            critical_issues=counts.critical,
            high_issues=counts.high,
            medium_issues=counts.medium,
            low_issues=counts.low,
            summary=summarize(progress.files_analyzed, len(issues)),
            recommendations=recommendations,
            completed_at=utcnow(),
        )
        logger.info("[Analysis %s] Results saved", state.job_id)
        return {"job": job}

    def finalize_empty(self, state: AnalysisState) -> dict:
        """Complete a job that had nothing to analyse."""
        logger.info("[Analysis %s] No code files found, completing empty", state.job_id)
        job = self.store.patch_job(
            state.job_id,
            status="completed",
            total_files=0,
            files_analyzed=0,
            overall_score=100,
            total_issues=0,
            summary=EMPTY_SUMMARY,
            recommendations=list(EMPTY_RECOMMENDATIONS),
            completed_at=utcnow(),
        )
        return {"job": job}

    def _record_review(self, state: AnalysisState, progress: JobProgress, score: int) -> None:
        job = self.store.get_job(state.job_id)
        issues = progress.issues
        merged = merge_analyses(progress.results) if progress.results else None

        review = self.store.create_review(
            Review(
                user_id=job.user_id,
                repository_id=job.repository_id,
                pr_number=0,  # 0 marks a whole-repository review
                pr_title=f"Repository Analysis: {job.owner}/{job.repo}",
                pr_url=f"/analysis/{job.id}",
                status="analyzing",
                provider=job.provider,
                analysis_id=job.id,
            )
        )
        self.store.patch_review(
            review.id,
            status="completed",
            overall_assessment=(
                f"Full repository analysis completed with score {score}/100. "
                f"{len(issues)} issues found across {progress.files_analyzed} files."
            ),
            complexity_score=merged.complexity_score if merged else None,
            recommendation=merged.recommendation if merged else "APPROVE",
            analyzed_at=utcnow(),
        )
        if issues:
            self.store.add_issues(
                [StoredIssue(**issue.model_dump(), review_id=review.id) for issue in issues]
            )

        self.store.create_metrics(
            Metrics(
                review_id=review.id,
                files_changed=progress.files_analyzed,
                analysis_time_ms=int((time.monotonic() - state.started_at) * 1000),
                ai_tokens_used=math.ceil(progress.analyzed_chars / 4),
            )
        )
        logger.info("[Analysis %s] Review record created: %s", state.job_id, review.id)

    # -----------------------------------------------------------------------
    # Routing
    # -----------------------------------------------------------------------
    @staticmethod
    def route_after_prepare(state: AnalysisState) -> str:
        # LangGraph may pass state as dict or dataclass
        progress = state["progress"] if isinstance(state, dict) else state.progress
        return "empty" if progress.total_files == 0 else "analyze"

    @staticmethod
    def route_after_batch(state: AnalysisState) -> str:
        progress = state["progress"] if isinstance(state, dict) else state.progress
        return "finalize" if progress.done else "next"

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(AnalysisState)

        graph.add_node("prepare_files", self.prepare_files)
        graph.add_node("analyze_batch", self.analyze_batch)
        graph.add_node("finalize", self.finalize)
        graph.add_node("finalize_empty", self.finalize_empty)

        graph.add_edge(START, "prepare_files")
        graph.add_conditional_edges(
            "prepare_files",
            self.route_after_prepare,
            {"analyze": "analyze_batch", "empty": "finalize_empty"},
        )
        graph.add_conditional_edges(
            "analyze_batch",
            self.route_after_batch,
            {"next": "analyze_batch", "finalize": "finalize"},
        )
        graph.add_edge("finalize", END)
        graph.add_edge("finalize_empty", END)

        return graph
