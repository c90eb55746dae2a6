import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sakila_agent.config import LOG_LEVEL
from sakila_agent.db import dispose_engine
from sakila_agent.models import AgentResponse, AskRequest
from sakila_agent.pipeline import process_user_query

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Sakila agent starting")
    yield
    await dispose_engine()
    logger.info("Database pool disposed")


app = FastAPI(title="Sakila Agent Service", lifespan=lifespan)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/ask", response_model=AgentResponse)
async def ask(req: AskRequest):
    """
    Answers a natural-language question about the movie rental database.
    Always 200: pipeline failures come back as the generic error text.
    """
    return await process_user_query(req.question)
