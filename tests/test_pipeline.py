"""End-to-end runs of the controller with every collaborator faked."""

import time

import pytest

from sakila_agent.config import GENERIC_ERROR_MESSAGE, HTML_PLACEHOLDER
from sakila_agent.errors import ModelCallError, SchemaLoadError
from sakila_agent.pipeline import Pipeline, PipelineState, to_agent_response
from sakila_agent.translator import SQL_TEMPLATES
from tests.conftest import FakeDatabase, FakeLLM

MATRIX_ROWS = [{"title": "Matrix", "release_year": 1999, "rating": "R"}]


def _pipeline(schema_loader, llm, database, timeout_ms=1000) -> Pipeline:
    return Pipeline(schema_loader=schema_loader, llm=llm, database=database, timeout_ms=timeout_ms)


@pytest.mark.asyncio
async def test_action_movies_template_to_html(schema_loader):
    llm = FakeLLM(responses=["<h3>Action</h3><ul><li><strong>Matrix</strong> (1999)</li></ul>"])
    database = FakeDatabase(rows=MATRIX_ROWS)

    response, trace = await _pipeline(schema_loader, llm, database).run("action movies")

    assert database.calls == [SQL_TEMPLATES["action movies"]]
    assert len(llm.prompts) == 1  # formatting only
    assert "Matrix" in llm.prompts[0]
    assert response.response == HTML_PLACEHOLDER
    assert response.html_response.startswith("<h3>Action</h3>")
    assert trace.history == [
        PipelineState.IDLE,
        PipelineState.SCHEMA_LOADED,
        PipelineState.SQL_GENERATED,
        PipelineState.SQL_VALIDATED,
        PipelineState.EXECUTED,
        PipelineState.FORMATTED,
        PipelineState.DONE,
    ]
    assert trace.row_count == 1
    assert set(trace.timings_ms) == {"schema", "translate", "validate", "execute", "format", "finalize"}


@pytest.mark.asyncio
async def test_rental_statistics_without_rows_needs_no_model(schema_loader):
    llm = FakeLLM()
    database = FakeDatabase(rows=[])

    response = await _pipeline(schema_loader, llm, database).process("rental statistics")

    assert response.response == 'No results found for your query: "rental statistics".'
    assert response.html_response is None
    assert llm.prompts == []
    assert database.calls == [SQL_TEMPLATES["rental statistics"]]


@pytest.mark.asyncio
async def test_model_sql_is_cleaned_before_execution(schema_loader):
    llm = FakeLLM(responses=["```sql\nSELECT first_name FROM actor LIMIT 3\n```", "Three actors."])
    database = FakeDatabase(rows=[{"first_name": "PENELOPE"}])

    response, trace = await _pipeline(schema_loader, llm, database).run("name three actors")

    assert database.calls == ["SELECT first_name FROM actor LIMIT 3"]
    assert trace.raw_sql.startswith("```sql")
    assert trace.sql == "SELECT first_name FROM actor LIMIT 3"
    assert response.response == "Three actors."
    assert response.html_response is None


@pytest.mark.asyncio
async def test_family_question_gets_plain_text(schema_loader):
    llm = FakeLLM(responses=["SELECT title FROM film WHERE rating = 'G'", "There are two family films."])
    database = FakeDatabase(rows=[{"title": "ACE GOLDFINGER"}, {"title": "AFRICAN EGG"}])

    response = await _pipeline(schema_loader, llm, database).process("family films")

    assert "paragraph" in llm.prompts[1]
    assert response.response == "There are two family films."
    assert response.html_response is None


@pytest.mark.asyncio
async def test_drop_from_model_is_blocked(schema_loader):
    llm = FakeLLM(responses=["DROP everything"])
    database = FakeDatabase(rows=MATRIX_ROWS)

    response, trace = await _pipeline(schema_loader, llm, database).run("DROP everything")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert response.html_response is None
    assert database.calls == []
    assert trace.failed_stage == "validate"
    assert trace.error.startswith("SecurityValidationError")
    assert trace.history[-1] is PipelineState.FAILED
    assert PipelineState.SQL_VALIDATED not in trace.history


@pytest.mark.asyncio
async def test_stacked_statement_is_blocked(schema_loader):
    llm = FakeLLM(responses=["SELECT 1; DROP TABLE film"])
    database = FakeDatabase()

    response, trace = await _pipeline(schema_loader, llm, database).run("something odd")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert database.calls == []
    assert "forbidden keyword" in trace.error


@pytest.mark.asyncio
async def test_timeout_returns_generic_error_quickly(schema_loader):
    llm = FakeLLM()
    database = FakeDatabase(rows=MATRIX_ROWS, delay=2.0)

    started = time.monotonic()
    response, trace = await _pipeline(schema_loader, llm, database, timeout_ms=50).run("old movies")
    elapsed = time.monotonic() - started

    assert elapsed < 0.5
    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "execute"
    assert trace.error.startswith("ExecutionTimeoutError")
    assert trace.row_count is None
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_database_error(schema_loader):
    database = FakeDatabase(error=RuntimeError("Table 'sakila.films' doesn't exist"))

    response, trace = await _pipeline(schema_loader, FakeLLM(), database).run("top actors")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "execute"


@pytest.mark.asyncio
async def test_schema_failure_stops_everything():
    async def broken_loader():
        raise SchemaLoadError("Cannot read schema file")

    llm = FakeLLM()
    database = FakeDatabase()

    response, trace = await _pipeline(broken_loader, llm, database).run("action movies")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "schema"
    assert trace.history == [PipelineState.IDLE, PipelineState.FAILED]
    assert llm.prompts == []
    assert database.calls == []


@pytest.mark.asyncio
async def test_translation_model_failure(schema_loader):
    llm = FakeLLM(error=ModelCallError("Model API error: 429", status_code=429))
    database = FakeDatabase()

    response, trace = await _pipeline(schema_loader, llm, database).run("films longer than 3 hours")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "translate"
    assert database.calls == []


@pytest.mark.asyncio
async def test_formatting_model_failure(schema_loader):
    llm = FakeLLM(error=ModelCallError("Model API error: 500", status_code=500))
    database = FakeDatabase(rows=MATRIX_ROWS)

    response, trace = await _pipeline(schema_loader, llm, database).run("action movies")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "format"
    assert trace.row_count == 1


@pytest.mark.asyncio
async def test_back_reference_token_is_not_shown(schema_loader):
    llm = FakeLLM(responses=["$1"])
    database = FakeDatabase(rows=MATRIX_ROWS)

    response, trace = await _pipeline(schema_loader, llm, database).run("action movies")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "finalize"


@pytest.mark.asyncio
async def test_blank_question(schema_loader):
    llm = FakeLLM()

    response, trace = await _pipeline(schema_loader, llm, FakeDatabase()).run("   ")

    assert response.response == GENERIC_ERROR_MESSAGE
    assert trace.failed_stage == "translate"
    assert llm.prompts == []


def test_to_agent_response():
    html = to_agent_response("<table><tr><td>1</td></tr></table>")
    assert html.response == HTML_PLACEHOLDER
    assert html.html_response == "<table><tr><td>1</td></tr></table>"

    text = to_agent_response("Total rentals: 16044")
    assert text.response == "Total rentals: 16044"
    assert text.html_response is None

    # a dollar amount is content, not a back-reference
    assert to_agent_response("$4.99 on average").response == "$4.99 on average"
