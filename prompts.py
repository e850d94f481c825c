"""Prompt templates for code analysis and remediation."""

from models import Issue, RepositoryContext

# =============================================================================
# SHARED PREAMBLE
# =============================================================================

_SEVERITY_GUIDE = (
    "SEVERITY LEVELS:\n"
    "- CRITICAL: Security vulnerabilities, data loss, crashes, production blockers\n"
    "- HIGH: Core functionality bugs, major performance issues, breaking changes\n"
    "- MEDIUM: Code quality, minor bugs, optimization, maintainability\n"
    "- LOW: Style, minor refactoring, documentation, nice-to-haves\n"
)

_DIMENSIONS = (
    "Analyse ALL of these dimensions:\n"
    "- SECURITY: auth flaws, injection, XSS, CSRF, exposed secrets,"
    " input validation, crypto weaknesses\n"
    "- BUGS & LOGIC: null references, race conditions, leaks, edge cases,"
    " type mismatches\n"
    "- PERFORMANCE: quadratic loops, N+1 queries, blocking I/O,"
    " inefficient data structures\n"
    "- QUALITY: duplication, function complexity, naming, magic numbers,"
    " error handling\n"
    "- ARCHITECTURE: separation of concerns, modularity, API design\n"
)

_FIX_QUALITY = (
    "Every suggestion must say HOW to fix the issue and WHY it is better. "
    "Include a short working code example when possible. "
    "Acknowledge good patterns in positive_points.\n"
)

_OUTPUT_RULES = (
    "Respond with ONLY one valid JSON object. No markdown, no code fences, "
    "no explanation before or after it.\n"
)


# =============================================================================
# ANALYSIS PROMPT
# =============================================================================

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert code reviewer. Always respond with valid JSON only."
)

ANALYSIS_PROMPT = (
    "You are a SENIOR SOFTWARE ARCHITECT performing a thorough code review.\n"
    "\n"
    "REPOSITORY: {repository}\n"
    "ANALYSIS: {title}\n"
    "LANGUAGE: {language}\n"
    "\n"
    "CODE TO ANALYZE:\n"
    "{code}\n"
    "\n"
    + _DIMENSIONS
    + "\n"
    + _SEVERITY_GUIDE
    + "\n"
    + _FIX_QUALITY
    + "\n"
    + _OUTPUT_RULES
    + "\n"
    "Required format:\n"
    '{{"overall_assessment":"2-3 sentence executive summary",'
    '"complexity_score":1,'
    '"issues":[{{"severity":"CRITICAL|HIGH|MEDIUM|LOW",'
    '"type":"security|bug|performance|quality|style|architecture",'
    '"file":"path/to/file.ext","line":42,'
    '"description":"issue and its impact",'
    '"suggestion":"fix and why it is better",'
    '"code_example":"working code fix"}}],'
    '"positive_points":["good practice found"],'
    '"recommendation":"APPROVE|REQUEST_CHANGES|COMMENT"}}\n'
    "\n"
    "complexity_score is an integer from 1 (trivial) to 10 (very complex).\n"
    'If no issues are found, return an empty "issues" list and '
    '"recommendation":"APPROVE".'
)


def build_analysis_prompt(
    repository: str,
    title: str,
    code: str,
    language: str,
) -> str:
    """Fill the analysis template for one code or diff body."""
    return ANALYSIS_PROMPT.format(
        repository=repository,
        title=title,
        language=language,
        code=code,
    )


# =============================================================================
# REMEDIATION PROMPTS
# =============================================================================

_FIX_FORMAT = (
    "RESPONSE FORMAT (STRICTLY REQUIRED):\n"
    "\n"
    "ANALYSIS_START\n"
    "Root cause, impact and risk of leaving it unfixed\n"
    "ANALYSIS_END\n"
    "\n"
    "FIXED_CODE_START\n"
    "```\n"
    "complete, corrected code\n"
    "```\n"
    "FIXED_CODE_END\n"
    "\n"
    "EXPLANATION_START\n"
    "What was wrong, what changed, and how to test it\n"
    "EXPLANATION_END\n"
    "\n"
    "ERROR_IDENTIFIED_START\n"
    "{error}\n"
    "ERROR_IDENTIFIED_END\n"
)

_FIX_REQUIREMENTS = (
    "The fix must:\n"
    "1. Resolve the core issue completely\n"
    "2. Preserve existing behaviour and public interfaces\n"
    "3. Handle edge cases and errors explicitly\n"
    "4. Follow the idioms of the language\n"
)

FIX_PROMPT = (
    "You are a Senior Software Engineer resolving one reported issue.\n"
    "\n"
    "ISSUE:\n"
    "Severity: {severity}\n"
    "Issue Type: {category}\n"
    "Affected File: {file}\n"
    "{line_note}"
    "\n"
    "Description:\n"
    "{description}\n"
    "\n"
    "{suggestion_note}"
    "{example_note}"
    "REPOSITORY CONTEXT:\n"
    "- Owner: {owner}\n"
    "- Name: {name}\n"
    "- Language: {language}\n"
    "\n"
    + _FIX_REQUIREMENTS
    + "\n"
    + _FIX_FORMAT
)

DEBUG_PROMPT = (
    "You are a Senior Software Engineer debugging a code snippet.\n"
    "\n"
    "Programming Language: {language}\n"
    "\n"
    "{error_note}"
    "Code Under Review:\n"
    "```{language}\n"
    "{code}\n"
    "```\n"
    "\n"
    "Find syntax, type, runtime, logic and security errors, then return a "
    "corrected version of the whole snippet.\n"
    "\n"
    + _FIX_REQUIREMENTS
    + "\n"
    + _FIX_FORMAT
)


def build_fix_prompt(issue: Issue, context: RepositoryContext) -> str:
    """Build the remediation prompt for a single finding."""
    line_note = f"Line Number: {issue.line}\n" if issue.line else ""
    suggestion_note = (
        f"Initial Suggestion: {issue.suggestion}\n\n" if issue.suggestion else ""
    )
    example_note = (
        f"Current Implementation:\n```\n{issue.code_example}\n```\n\n"
        if issue.code_example
        else ""
    )
    return FIX_PROMPT.format(
        severity=issue.severity,
        category=issue.category,
        file=issue.file or "unknown",
        line_note=line_note,
        description=issue.description,
        suggestion_note=suggestion_note,
        example_note=example_note,
        owner=context.owner,
        name=context.name,
        language=context.language,
        error=issue.description,
    )


def build_debug_prompt(code: str, error_message: str | None, language: str) -> str:
    """Build the prompt for debugging a pasted snippet."""
    if error_message:
        error_note = f"Reported Error:\n{error_message}\n\n"
        error = error_message
    else:
        error_note = "Task: full audit of the snippet\n\n"
        error = "Concise summary of the primary error that was fixed"
    return DEBUG_PROMPT.format(
        language=language,
        error_note=error_note,
        code=code,
        error=error,
    )
