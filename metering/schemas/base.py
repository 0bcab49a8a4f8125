"""
Base model for API schemas: camelCase on the wire, snake_case in Python.
"""
import math
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# Counters and limits are INTEGER columns
MAX_UNITS = 2**31 - 1


class CamelModel(BaseModel):
    """Accepts camelCase or snake_case input; serializes camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def serialize_remaining(value: Optional[float]) -> Optional[float]:
    """Unlimited capacity (math.inf) has no JSON representation; emit null."""
    if value is None or math.isinf(value):
        return None
    if float(value).is_integer():
        return int(value)
    return value
