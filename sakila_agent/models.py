from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field


# Column values as they come back from the driver
Cell = Union[None, bool, int, float, Decimal, str, date, datetime, time, timedelta]
Row = Dict[str, Cell]


class AskRequest(BaseModel):
    question: str = Field(min_length=1)


class AgentResponse(BaseModel):
    response: str
    html_response: str | None = None


# ==========================
# Schema document
# ==========================

class ColumnInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    nullable: bool | None = None
    key: str | None = None
    description: str | None = None


class TableSchema(BaseModel):
    columns: Dict[str, ColumnInfo] = Field(default_factory=dict)


class Schema(BaseModel):
    """Loaded once per process and shared by every request; treat as read-only.

    ``frozen`` only blocks attribute assignment, the nested mappings are still
    plain dicts at runtime.
    """

    model_config = ConfigDict(frozen=True)

    database: str
    tables: Mapping[str, TableSchema]


# ==========================
# Model configuration document
# ==========================

class ModelConfig(BaseModel):
    """Connection settings for the generative model, as stored in ai_config.json."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    api_endpoint: str = Field(alias="apiEndpoint")
    api_key: str = Field(alias="apiKey", repr=False)
    model: str
    temperature: float = 0.1
    max_output_tokens: int = Field(default=2048, alias="maxOutputTokens")
    thinking_budget: int = Field(default=0, alias="thinkingBudget")

    def generation_config(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "thinkingConfig": {"thinkingBudget": self.thinking_budget},
        }
