"""RepoLens command line: analyse a repository or review a pull request."""

import argparse
import logging
import os
import sys

import config
from models import AnalysisJob
from providers import ProviderError
from reviewer import print_review
from service import CodeReviewService
from storage import InMemoryStore

logger = logging.getLogger(__name__)

CLI_USER = "cli"


def build_service() -> CodeReviewService:
    """Service backed by an in-memory store, keys taken from the environment."""
    service = CodeReviewService(InMemoryStore())
    service.update_settings(
        CLI_USER,
        provider=config.DEFAULT_PROVIDER,
        openai_key=os.getenv("OPENAI_API_KEY"),
        anthropic_key=os.getenv("ANTHROPIC_API_KEY"),
        gemini_key=os.getenv("GEMINI_API_KEY"),
    )
    return service


def print_analysis(job: AnalysisJob, issues: list) -> None:
    """Pretty print a finished repository analysis."""
    print(f"\n{'=' * 60}")
    print(f"📋 REPOSITORY ANALYSIS: {job.owner}/{job.repo}")
    print(f"{'=' * 60}")
    print(f"Status: {job.status}")
    if job.status == "failed":
        print(f"  ⚠️  Error: {job.failure_reason}")
        return

    print(f"Files analyzed: {job.files_analyzed}/{job.total_files}")
    print(f"Score: {job.overall_score}/100")
    print(
        f"Issues: {job.total_issues} "
        f"(critical {job.critical_issues}, high {job.high_issues}, "
        f"medium {job.medium_issues}, low {job.low_issues})"
    )
    print(f"\n{job.summary}")
    for recommendation in job.recommendations:
        print(f"  • {recommendation}")

    for issue in issues:
        location = f"{issue.file}:{issue.line}" if issue.line else issue.file
        print(f"\n  [{issue.severity}] {issue.category} - {location}")
        print(f"     {issue.description}")
    print()


def cmd_analyze(service: CodeReviewService, args: argparse.Namespace) -> int:
    owner, repo = config.validate_repo(args.repo).split("/")
    job_id = service.submit_repository_analysis(CLI_USER, owner, repo, args.provider)
    logger.info("Started analysis %s", job_id)

    job = service.wait_for(job_id)
    print_analysis(job, service.get_analysis(job_id).issues)
    return 0 if job.status == "completed" else 1


def cmd_review(service: CodeReviewService, args: argparse.Namespace) -> int:
    owner, repo = config.validate_repo(args.repo).split("/")
    review = service.review_pull_request(
        CLI_USER, owner, repo, args.pr_number, args.provider, post=not args.dry_run
    )
    print_review(review, service.review_issues(review.id))
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="repolens", description=__doc__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyse a whole repository")
    analyze.add_argument("repo", help="Repository as owner/repo")
    analyze.add_argument("--provider", choices=config.PROVIDERS, default=None)

    review = subparsers.add_parser("review", help="Review one pull request")
    review.add_argument("repo", help="Repository as owner/repo")
    review.add_argument("pr_number", type=int)
    review.add_argument("--provider", choices=config.PROVIDERS, default=None)
    review.add_argument(
        "--dry-run", action="store_true", help="Don't post the review to GitHub"
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if config.USE_MOCK:
        logger.info("[MOCK MODE - No AI API calls made]")

    service = build_service()
    try:
        if args.command == "analyze":
            return cmd_analyze(service, args)
        return cmd_review(service, args)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except ProviderError as e:
        logger.error("API error: %s", e)
        return 1
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
