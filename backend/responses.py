# responses.py — Response envelope shared by every router
# {success, message?, data?, errors?}; keys with no value are omitted.
import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def envelope(
    success: bool,
    data: Any = None,
    message: Optional[str] = None,
    errors: Optional[Dict[str, List[str]]] = None,
    include_data: bool = False,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if message:
        body["message"] = message
    if data is not None or include_data:
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True, mode="json")
        elif isinstance(data, list):
            data = [d.model_dump(by_alias=True, mode="json") if isinstance(d, BaseModel) else d for d in data]
        body["data"] = data
    if errors:
        body["errors"] = errors
    return body


def ok(data: Any = None, message: Optional[str] = None, include_data: bool = False) -> Dict[str, Any]:
    return envelope(True, data=data, message=message, include_data=include_data)


def fail(message: str, errors: Optional[Dict[str, List[str]]] = None) -> Dict[str, Any]:
    return envelope(False, message=message, errors=errors)


def pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


class CamelModel(BaseModel):
    """Schemas read and write camelCase JSON while Python code stays snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def not_null(value: Any) -> Any:
    """Field validator for PATCH schemas: the key may be omitted but not sent as null."""
    if value is None:
        raise ValueError("Field cannot be null")
    return value
