"""Base class for records persisted as Redis hashes."""
from typing import Dict, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from athwatch.core.errors import RecordInvalid


R = TypeVar("R", bound="RedisRecord")


class RedisRecord(BaseModel):
    """Structured record validated at the store boundary.

    Redis hashes only hold strings, so values are serialized to their JSON
    representation (bools as ``true``/``false``, datetimes as ISO 8601) and
    parsed back through pydantic validation on read. ``None`` fields are
    omitted from the hash.
    """

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    def to_mapping(self) -> Dict[str, str]:
        mapping = {}
        for field, value in self.model_dump(mode="json").items():
            if value is None:
                continue
            if isinstance(value, bool):
                mapping[field] = "true" if value else "false"
            else:
                mapping[field] = str(value)
        return mapping

    @classmethod
    def from_mapping(cls: Type[R], key: str, data: Dict[str, str]) -> R:
        """Parse a Redis hash, raising ``RecordInvalid`` on malformed data."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise RecordInvalid(key, f"{e.error_count()} validation error(s)") from e
