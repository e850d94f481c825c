"""Merging of partial analysis results and severity-weighted scoring."""

import math
from collections.abc import Sequence
from dataclasses import dataclass

from models import CanonicalResult, Issue

# Higher wins when merging partial results
RECOMMENDATION_PRECEDENCE = {
    "APPROVE": 0,
    "COMMENT": 1,
    "REQUEST_CHANGES": 2,
}

SEVERITY_WEIGHTS = {
    "CRITICAL": 10,
    "HIGH": 5,
    "MEDIUM": 2,
    "LOW": 0.5,
}

PERFORMANCE_NOTE_THRESHOLD = 5


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class SeverityCounts:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low


def count_severities(issues: Sequence[Issue]) -> SeverityCounts:
    by_severity = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0}
    for issue in issues:
        by_severity[issue.severity] += 1
    return SeverityCounts(
        critical=by_severity["CRITICAL"],
        high=by_severity["HIGH"],
        medium=by_severity["MEDIUM"],
        low=by_severity["LOW"],
    )


def overall_score(counts: SeverityCounts) -> int:
    """
    Score out of 100, lowered by each issue according to its severity.

    critical -10, high -5, medium -2, low -0.5; rounded half up and
    clamped to 0..100.
    """
    penalty = (
        SEVERITY_WEIGHTS["CRITICAL"] * counts.critical
        + SEVERITY_WEIGHTS["HIGH"] * counts.high
        + SEVERITY_WEIGHTS["MEDIUM"] * counts.medium
        + SEVERITY_WEIGHTS["LOW"] * counts.low
    )
    return min(100, max(0, round_half_up(100 - penalty)))


def most_severe_recommendation(recommendations: Sequence[str]) -> str:
    return max(recommendations, key=RECOMMENDATION_PRECEDENCE.__getitem__)


def merge_analyses(results: Sequence[CanonicalResult]) -> CanonicalResult:
    """
    Combine per-chunk (or per-batch) results into one.

    Assessments are joined with a space, complexity is the mean rounded
    half up, issues keep their order, positive points are de-duplicated
    and the strictest recommendation wins.

    Raises:
        ValueError: If *results* is empty
    """
    if not results:
        raise ValueError("No analysis results to merge")
    if len(results) == 1:
        return results[0].model_copy(deep=True)

    assessments = [r.overall_assessment for r in results if r.overall_assessment]
    complexity = round_half_up(
        sum(r.complexity_score for r in results) / len(results)
    )
    issues = [issue for r in results for issue in r.issues]
    positive_points = list(dict.fromkeys(p for r in results for p in r.positive_points))

    return CanonicalResult(
        overall_assessment=" ".join(assessments),
        complexity_score=complexity,
        issues=issues,
        positive_points=positive_points,
        recommendation=most_severe_recommendation([r.recommendation for r in results]),
    )


def generate_recommendations(issues: Sequence[Issue]) -> list[str]:
    """Ordered, human-readable follow-ups for a finished analysis."""
    recommendations = []

    critical = sum(1 for issue in issues if issue.severity == "CRITICAL")
    security = sum(1 for issue in issues if issue.category == "security")
    performance = sum(1 for issue in issues if issue.category == "performance")

    if critical > 0:
        recommendations.append(f"Address {critical} critical issue(s) immediately")
    if security > 0:
        recommendations.append(f"Review and fix {security} security vulnerability(ies)")
    if performance > PERFORMANCE_NOTE_THRESHOLD:
        recommendations.append("Consider performance optimization for better efficiency")

    if not recommendations:
        recommendations.append("Code quality is good! Continue following best practices")

    return recommendations


def summarize(files_analyzed: int, issue_count: int) -> str:
    return f"Analyzed {files_analyzed} files and found {issue_count} issues."
