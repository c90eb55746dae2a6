"""Question -> SQL -> rows -> formatted answer.

Stages run strictly in order and each one either hands its result to the
next or raises. The controller is the only place errors are caught: the
detail goes to the log and the user always gets the same generic message.
"""

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sakila_agent import db
from sakila_agent.config import GENERIC_ERROR_MESSAGE, HTML_PLACEHOLDER, QUERY_TIMEOUT_MS
from sakila_agent.errors import MalformedResponseError, PipelineError, TranslationError
from sakila_agent.formatter import format_response
from sakila_agent.llm import GeminiClient, TextGenerator
from sakila_agent.models import AgentResponse, Schema
from sakila_agent.schema import load_schema
from sakila_agent.sql_guard import strip_code_fence, validate_select_query
from sakila_agent.translator import generate_sql

logger = logging.getLogger(__name__)

MARKUP_PATTERN = re.compile(r"<[^>]*>")
# Multipart back-reference ("$1") that leaked instead of real content
BACK_REFERENCE_PATTERN = re.compile(r"^\$\d+$")


class PipelineState(enum.Enum):
    IDLE = "idle"
    SCHEMA_LOADED = "schema_loaded"
    SQL_GENERATED = "sql_generated"
    SQL_VALIDATED = "sql_validated"
    EXECUTED = "executed"
    FORMATTED = "formatted"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE = {
    PipelineState.IDLE: PipelineState.SCHEMA_LOADED,
    PipelineState.SCHEMA_LOADED: PipelineState.SQL_GENERATED,
    PipelineState.SQL_GENERATED: PipelineState.SQL_VALIDATED,
    PipelineState.SQL_VALIDATED: PipelineState.EXECUTED,
    PipelineState.EXECUTED: PipelineState.FORMATTED,
    PipelineState.FORMATTED: PipelineState.DONE,
}


@dataclass
class PipelineTrace:
    """Diagnostics for one request. Logged, never shown to the user."""

    question: str
    state: PipelineState = PipelineState.IDLE
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    raw_sql: Optional[str] = None
    sql: Optional[str] = None
    row_count: Optional[int] = None
    timings_ms: Dict[str, float] = field(default_factory=dict)
    failed_stage: Optional[str] = None
    error: Optional[str] = None

    def advance(self, state: PipelineState, stage: str, started: float) -> None:
        if _NEXT_STATE.get(self.state) is not state:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        self.timings_ms[stage] = (time.monotonic() - started) * 1000
        self.state = state
        self.history.append(state)

    def fail(self, stage: str, error: Exception) -> None:
        self.failed_stage = stage
        self.error = f"{type(error).__name__}: {error}"
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)


def to_agent_response(content: str) -> AgentResponse:
    if MARKUP_PATTERN.search(content):
        return AgentResponse(response=HTML_PLACEHOLDER, html_response=content)
    if BACK_REFERENCE_PATTERN.match(content.strip()):
        raise MalformedResponseError(f"Formatter returned a back-reference token: {content[:20]!r}")
    return AgentResponse(response=content)


class Pipeline:
    def __init__(
        self,
        schema_loader: Callable[[], Awaitable[Schema]] = load_schema,
        llm: Optional[TextGenerator] = None,
        database: db.DatabaseCall = db.run_sql,
        timeout_ms: int = QUERY_TIMEOUT_MS,
    ):
        self.schema_loader = schema_loader
        self.llm = llm if llm is not None else GeminiClient()
        self.database = database
        self.timeout_ms = timeout_ms

    async def run(self, question: str) -> Tuple[AgentResponse, PipelineTrace]:
        trace = PipelineTrace(question=question)
        stage = "schema"
        logger.info("Processing question: %s", question)
        try:
            started = time.monotonic()
            schema = await self.schema_loader()
            trace.advance(PipelineState.SCHEMA_LOADED, stage, started)

            stage = "translate"
            started = time.monotonic()
            if not question.strip():
                raise TranslationError("Question is empty")
            trace.raw_sql = await generate_sql(question, schema, self.llm)
            trace.advance(PipelineState.SQL_GENERATED, stage, started)
            logger.info("Raw SQL generated: %s", trace.raw_sql)

            stage = "validate"
            started = time.monotonic()
            trace.sql = strip_code_fence(trace.raw_sql)
            validate_select_query(trace.raw_sql)
            trace.advance(PipelineState.SQL_VALIDATED, stage, started)

            stage = "execute"
            started = time.monotonic()
            rows = await db.execute_query(trace.sql, self.timeout_ms, database=self.database)
            trace.row_count = len(rows)
            trace.advance(PipelineState.EXECUTED, stage, started)

            stage = "format"
            started = time.monotonic()
            content = await format_response(question, rows, self.llm)
            trace.advance(PipelineState.FORMATTED, stage, started)

            stage = "finalize"
            started = time.monotonic()
            response = to_agent_response(content)
            trace.advance(PipelineState.DONE, stage, started)

        except Exception as e:
            failed_stage = e.stage if isinstance(e, PipelineError) else stage
            trace.fail(failed_stage, e)
            logger.error(
                "Pipeline failed at stage %s: %s (trace=%s)",
                failed_stage,
                trace.error,
                trace,
                exc_info=not isinstance(e, PipelineError),
            )
            return AgentResponse(response=GENERIC_ERROR_MESSAGE), trace

        logger.info("Pipeline done: %d rows, timings=%s", trace.row_count, trace.timings_ms)
        return response, trace

    async def process(self, question: str) -> AgentResponse:
        response, _ = await self.run(question)
        return response


_default_pipeline: Optional[Pipeline] = None


def get_pipeline() -> Pipeline:
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = Pipeline()
    return _default_pipeline


async def process_user_query(question: str) -> AgentResponse:
    """Entry point for the UI layer. Never raises."""
    return await get_pipeline().process(question)
