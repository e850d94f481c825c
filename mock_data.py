"""Mock responses for running without API calls (USE_MOCK=true)."""

# Analysis response, fenced the way chat models often return it
MOCK_RESPONSE = """```json
{
  "overall_assessment": "The `calculate_average` helper is small and readable but does not handle empty input.",
  "complexity_score": 2,
  "issues": [
    {
      "severity": "MEDIUM",
      "type": "bug",
      "file": "src/stats.py",
      "line": 3,
      "description": "`calculate_average` raises ZeroDivisionError when an empty list is passed, as `len(numbers)` is 0.",
      "suggestion": "Return 0 (or raise a ValueError) when the list is empty.",
      "code_example": "if not numbers:\\n    return 0"
    }
  ],
  "positive_points": ["Function is short and has a single responsibility"],
  "recommendation": "COMMENT"
}
```"""

# Remediation response using the delimited-section format
MOCK_FIX_RESPONSE = """ANALYSIS_START
**Root Cause**: Division by the length of an empty list.
ANALYSIS_END

FIXED_CODE_START
```python
def calculate_average(numbers):
    if not numbers:
        return 0
    return sum(numbers) / len(numbers)
```
FIXED_CODE_END

EXPLANATION_START
Added a guard for empty input so the function no longer divides by zero.
EXPLANATION_END

ERROR_IDENTIFIED_START
ZeroDivisionError on empty input
ERROR_IDENTIFIED_END
"""
