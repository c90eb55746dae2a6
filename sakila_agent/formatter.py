import json
import logging
import re
from typing import List

from sakila_agent.config import MAX_FIELD_CHARS, MAX_ROWS_FOR_LLM
from sakila_agent.errors import FormattingError
from sakila_agent.llm import TextGenerator
from sakila_agent.models import Row

logger = logging.getLogger(__name__)

# Questions that read better as a paragraph than as a list or table
NARRATIVE_PATTERN = re.compile(r"\bfamily\b", re.IGNORECASE)

ELLIPSIS = "..."

PROSE_INSTRUCTION = (
    "Write a short, clear paragraph that answers the user's question in natural language. "
    "Do not use lists, tables, or HTML formatting. Do not use markdown. Do not explain."
)

HTML_INSTRUCTION = (
    "Simple, clean HTML for direct display. Use only basic HTML tags "
    "(like <h3>, <ul>, <li>, <table>, <tr>, <td>, <strong>, <em>). "
    "Do not use CSS classes or inline styles. Do not use markdown. Do not explain."
)


def no_results_message(question: str) -> str:
    return f'No results found for your query: "{question}".'


def limit_rows(rows: List[Row], max_rows: int = MAX_ROWS_FOR_LLM) -> List[Row]:
    if len(rows) <= max_rows:
        return rows
    logger.info("Limiting results from %d to %d", len(rows), max_rows)
    return rows[:max_rows]


def truncate_fields(rows: List[Row], max_chars: int = MAX_FIELD_CHARS) -> List[Row]:
    """Copy of ``rows`` with long strings cut to ``max_chars`` plus an ellipsis."""
    truncated = []
    for row in rows:
        truncated.append({
            key: value[:max_chars] + ELLIPSIS if isinstance(value, str) and len(value) > max_chars else value
            for key, value in row.items()
        })
    return truncated


def wants_narrative(question: str) -> bool:
    return bool(NARRATIVE_PATTERN.search(question))


def build_format_prompt(question: str, rows: List[Row]) -> str:
    payload = json.dumps(rows, ensure_ascii=False, default=str)
    instruction = PROSE_INSTRUCTION if wants_narrative(question) else HTML_INSTRUCTION
    return f"User: {question}\nResults: {payload}\nOutput: {instruction}"


async def format_response(
    question: str,
    rows: List[Row],
    llm: TextGenerator,
    max_rows: int = MAX_ROWS_FOR_LLM,
    max_chars: int = MAX_FIELD_CHARS,
) -> str:
    if not rows:
        return no_results_message(question)

    prepared = truncate_fields(limit_rows(rows, max_rows), max_chars)
    prompt = build_format_prompt(question, prepared)
    logger.info("Response formatting prompt length: %d", len(prompt))
    try:
        return await llm.generate(prompt)
    except Exception as e:
        raise FormattingError(f"Response formatting failed: {e}") from e
