"""Read-only gate between generated SQL and the database.

This is a lexical check, not a parser: it does not know about tables or
columns, only whether the text is a single statement that starts with
SELECT and never names a write/DDL/transaction keyword.
"""

import logging
import re

import sqlparse

from sakila_agent.errors import SecurityValidationError

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "CREATE",
    "REPLACE",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "COMMIT",
    "ROLLBACK",
)

_OPENING_FENCE = re.compile(r"^```(?:sql)?\s*", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\s*```$")
_STARTS_WITH_SELECT = re.compile(r"^\s*select\b", re.IGNORECASE)
_FORBIDDEN = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)


def strip_code_fence(sql: str) -> str:
    cleaned = sql.strip()
    # Nested or doubled fences: peel until no opening fence is left
    while cleaned.startswith("```"):
        cleaned = _CLOSING_FENCE.sub("", _OPENING_FENCE.sub("", cleaned)).strip()
    return cleaned


def count_statements(sql: str) -> int:
    # Comments are not statements: "SELECT 1;\n-- note" is one
    without_comments = sqlparse.format(sql, strip_comments=True)
    return sum(
        1 for statement in sqlparse.split(without_comments) if statement.strip().rstrip(";").strip()
    )


def validate_select_query(sql: str) -> None:
    """Raise ``SecurityValidationError`` unless ``sql`` is one read-only SELECT.

    Markdown fences are stripped first, so raw model output can be passed in.
    Returns nothing: passing means not raising.
    """
    cleaned = strip_code_fence(sql)

    if not _STARTS_WITH_SELECT.match(cleaned):
        raise SecurityValidationError("Only SELECT queries are allowed")

    match = _FORBIDDEN.search(cleaned)
    if match:
        logger.warning("Rejected SQL containing forbidden keyword %s", match.group(1).upper())
        raise SecurityValidationError(
            f"Query contains forbidden keyword: {match.group(1).upper()}"
        )

    if count_statements(cleaned) > 1:
        raise SecurityValidationError("Multiple statements are not allowed")
