"""Place review findings on commentable lines of a unified diff (unidiff)."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from github_client import ReviewComment
from models import Issue

logger = logging.getLogger(__name__)

# How far a finding may sit from the nearest line shown in the diff
MAX_LINE_DISTANCE = 5


@dataclass
class DiffLineMapping:
    """New-file lines of one file that GitHub accepts inline comments on."""

    filename: str
    valid_lines: set[int] = field(default_factory=set)


def build_line_mapping(diff_text: str) -> dict[str, DiffLineMapping]:
    """
    Collect the commentable lines of every file in *diff_text*.

    Inline review comments are addressed by ``line + side``; on the RIGHT
    side only added and context lines of the new version are accepted.

    Returns:
        Dict mapping filename -> DiffLineMapping (empty if the diff
        cannot be parsed)
    """
    try:
        patch_set = PatchSet(diff_text)
    except UnidiffParseError as e:
        logger.warning("Could not parse diff for line mapping: %s", e)
        return {}

    mappings: dict[str, DiffLineMapping] = {}
    for patched_file in patch_set:
        mappings[patched_file.path] = DiffLineMapping(
            filename=patched_file.path,
            valid_lines={
                line.target_line_no
                for hunk in patched_file
                for line in hunk
                if (line.is_added or line.is_context) and line.target_line_no is not None
            },
        )
    return mappings


def find_nearest_valid_line(
    mapping: DiffLineMapping,
    target_line: int,
    max_distance: int = MAX_LINE_DISTANCE,
) -> int | None:
    """
    Snap *target_line* to the closest commentable line, below first on ties.

    Returns None when nothing lies within *max_distance*.
    """
    candidates = [
        line for line in mapping.valid_lines if abs(line - target_line) <= max_distance
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda line: (abs(line - target_line), line < target_line))


def map_issues_to_comments(
    issues: Sequence[Issue],
    mappings: dict[str, DiffLineMapping],
    format_comment: Callable[[Issue], str],
    max_distance: int = MAX_LINE_DISTANCE,
) -> tuple[list[ReviewComment], list[Issue]]:
    """
    Split findings into inline comments and the ones left for the summary.

    An issue stays unmapped when it has no line, names a file outside the
    diff, or sits more than *max_distance* lines from any hunk.
    """
    comments: list[ReviewComment] = []
    unmapped: list[Issue] = []

    for issue in issues:
        mapping = mappings.get(issue.file)
        line = (
            find_nearest_valid_line(mapping, issue.line, max_distance)
            if mapping is not None and issue.line is not None
            else None
        )
        if line is None:
            unmapped.append(issue)
            continue
        comments.append(ReviewComment(path=issue.file, line=line, body=format_comment(issue)))

    return comments, unmapped
