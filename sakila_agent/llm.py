import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError

from sakila_agent.cache import AsyncLoader
from sakila_agent.config import AI_CONFIG_PATH, GEMINI_API_KEY, LLM_TIMEOUT_SECONDS
from sakila_agent.errors import ModelCallError, ModelConfigError
from sakila_agent.models import ModelConfig

logger = logging.getLogger(__name__)


def read_model_config(path: Path = AI_CONFIG_PATH, api_key: Optional[str] = GEMINI_API_KEY) -> ModelConfig:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ModelConfigError(f"Cannot read AI config {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ModelConfigError(f"Malformed AI config {path}: {e}") from e

    if api_key:
        data["apiKey"] = api_key

    try:
        return ModelConfig.model_validate(data)
    except ValidationError as e:
        raise ModelConfigError(f"Invalid AI config {path}: {e}") from e


async def _load_model_config() -> ModelConfig:
    logger.info("Loading AI config from %s", AI_CONFIG_PATH)
    config = await asyncio.to_thread(read_model_config, AI_CONFIG_PATH, GEMINI_API_KEY)
    logger.info("AI config loaded: model=%s endpoint=%s", config.model, config.api_endpoint)
    return config


model_config_cache: AsyncLoader[ModelConfig] = AsyncLoader(_load_model_config, name="AI config")


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


def extract_text(data: Dict[str, Any]) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        raise ModelCallError(f"Unexpected model response shape: {str(data)[:300]}") from e


class GeminiClient:
    """One ``generateContent`` POST per call. No retries: any failure is final."""

    def __init__(
        self,
        config_loader: AsyncLoader[ModelConfig] = model_config_cache,
        timeout: float = LLM_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config_loader = config_loader
        self._timeout = timeout
        self._transport = transport

    async def generate(self, prompt: str) -> str:
        config = await self._config_loader.get()
        url = f"{config.api_endpoint.rstrip('/')}/models/{config.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config.generation_config(),
        }

        started = time.monotonic()
        logger.info("Calling model %s (prompt length %d)", config.model, len(prompt))
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    headers={"x-goog-api-key": config.api_key},
                    json=body,
                )
        except httpx.HTTPError as e:
            raise ModelCallError(f"Model request to {url} failed: {e!r}") from e

        if not resp.is_success:
            logger.error("Model API error %d: %s", resp.status_code, resp.text[:500])
            raise ModelCallError(
                f"Model API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ModelCallError("Model API returned a non-JSON body") from e

        text = extract_text(data)
        logger.info(
            "Model response received in %.0f ms, length %d",
            (time.monotonic() - started) * 1000,
            len(text),
        )
        return text
