"""Base model for records and payloads on the v1 wire contract."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

API_VERSION = "v1"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; either is accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class RecordModel(WireModel):
    """Immutable snapshot of a store record. Transitions swap in a new copy."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)
