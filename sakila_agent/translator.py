import logging
from typing import Optional

from sakila_agent.errors import TranslationError
from sakila_agent.llm import TextGenerator
from sakila_agent.models import Schema
from sakila_agent.schema import summarize_schema

logger = logging.getLogger(__name__)

_FILMS_BY_CATEGORY = (
    "SELECT title, release_year, rating FROM film f "
    "JOIN film_category fc ON f.film_id = fc.film_id "
    "JOIN category c ON fc.category_id = c.category_id "
    'WHERE c.name = "{category}" ORDER BY release_year DESC LIMIT 50'
)

# Checked in order against the lower-cased question; first substring match wins.
SQL_TEMPLATES = {
    "action movies": _FILMS_BY_CATEGORY.format(category="Action"),
    "comedy movies": _FILMS_BY_CATEGORY.format(category="Comedy"),
    "drama movies": _FILMS_BY_CATEGORY.format(category="Drama"),
    "horror movies": _FILMS_BY_CATEGORY.format(category="Horror"),
    "recent movies": (
        "SELECT title, release_year, rating FROM film "
        "WHERE release_year >= 2000 ORDER BY release_year DESC LIMIT 50"
    ),
    "old movies": (
        "SELECT title, release_year, rating FROM film "
        "WHERE release_year < 2000 ORDER BY release_year ASC LIMIT 50"
    ),
    "top actors": (
        "SELECT a.first_name, a.last_name, COUNT(fa.film_id) as film_count FROM actor a "
        "JOIN film_actor fa ON a.actor_id = fa.actor_id "
        "GROUP BY a.actor_id ORDER BY film_count DESC LIMIT 50"
    ),
    "popular categories": (
        "SELECT c.name, COUNT(fc.film_id) as film_count FROM category c "
        "JOIN film_category fc ON c.category_id = fc.category_id "
        "GROUP BY c.category_id ORDER BY film_count DESC LIMIT 20"
    ),
    "rental statistics": (
        "SELECT COUNT(*) as total_rentals, COUNT(DISTINCT customer_id) as unique_customers, "
        "COUNT(DISTINCT inventory_id) as unique_items FROM rental LIMIT 1"
    ),
}


def get_template_sql(question: str) -> Optional[str]:
    lowered = question.lower()
    for phrase, sql in SQL_TEMPLATES.items():
        if phrase in lowered:
            logger.info("Using SQL template for: %s", phrase)
            return sql
    return None


def build_sql_prompt(question: str, schema: Schema) -> str:
    return (
        f"Database schema:\n{summarize_schema(schema)}\n\n"
        f'Convert this query to SQL: "{question}"\n\n'
        "Return only the SQL query, no explanations."
    )


async def generate_sql(question: str, schema: Schema, llm: TextGenerator) -> str:
    """Translate a question into candidate SQL.

    Known phrasings are answered from ``SQL_TEMPLATES`` without calling the
    model. Otherwise exactly one model request is made. Either way the text
    returned is untrusted and must go through the SQL guard.
    """
    template_sql = get_template_sql(question)
    if template_sql is not None:
        return template_sql

    prompt = build_sql_prompt(question, schema)
    logger.info("SQL generation prompt length: %d", len(prompt))
    try:
        return await llm.generate(prompt)
    except Exception as e:
        raise TranslationError(f"SQL generation failed: {e}") from e
