"""Tagged job payloads, validated at the queue boundary."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from weatherb.exceptions import PayloadValidationError


class QueueName(str, Enum):
    MARKET_CREATION = "market-creation"
    SETTLEMENT = "settlement"


class CreateMarketPayload(BaseModel):
    """Everything the creation worker needs to open one market."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["create-market"] = "create-market"
    city_id: str = Field(min_length=1)
    city_name: str = Field(min_length=1)
    latitude: float
    longitude: float
    city_id_bytes32: str = Field(pattern=r"^0x[a-fA-F0-9]{64}$")
    resolve_time_sec: int = Field(gt=0)


class SettleMarketPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["settle-market"] = "settle-market"
    market_id: int = Field(ge=0)


JobPayload = Union[CreateMarketPayload, SettleMarketPayload]

PAYLOAD_MODELS: dict[QueueName, type[BaseModel]] = {
    QueueName.MARKET_CREATION: CreateMarketPayload,
    QueueName.SETTLEMENT: SettleMarketPayload,
}


def parse_payload(model: type[BaseModel], raw: Any) -> BaseModel:
    """Validate ``raw`` against ``model``; raise PayloadValidationError on mismatch."""
    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise PayloadValidationError(
            f"invalid {model.__name__} payload: {exc.error_count()} error(s): {exc.errors()[0]['msg']}"
        ) from exc
