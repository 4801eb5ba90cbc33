"""JSON-mode encoding of domain dataclasses through pydantic"""

from functools import lru_cache
from typing import Any

from pydantic import TypeAdapter


@lru_cache(maxsize=None)
def _adapter(value_type: type) -> TypeAdapter:
    return TypeAdapter(value_type)


def to_jsonable(value: Any) -> Any:
    """
    Encode value into plain JSON types.

    Dataclasses become dicts of their declared fields, enums their values and
    datetimes ISO 8601 strings. Containers are walked by pydantic's type
    inference.
    """
    return _adapter(type(value)).dump_python(value, mode="json")
