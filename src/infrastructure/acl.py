import math
from datetime import datetime
from typing import Any, Callable, Dict

from pydantic import BaseModel, ValidationError

from src.domain.exceptions import MappingError
from src.domain.models import EntityMapping

TO_RESOURCE = "to-resource"
FROM_RESOURCE = "from-resource"

_TRUE_TEXT = "true"
_FALSE_TEXT = "false"


class CoercionError(ValueError):
    """A single value does not satisfy its declared primitive type."""


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a number here
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_finite(value):
    if isinstance(value, float) and not math.isfinite(value):
        raise CoercionError(f"{value!r} is not a finite number")
    return value


def _string_forward(value: Any) -> str:
    if not isinstance(value, str):
        raise CoercionError(f"expected text, got {type(value).__name__}")
    return value


def _string_backward(value: Any) -> str:
    if isinstance(value, str):
        return value
    if _is_number(value):
        return str(value)
    raise CoercionError(f"{type(value).__name__} is not representable as text")


def _number_forward(value: Any):
    if not _is_number(value):
        raise CoercionError(f"expected a number, got {type(value).__name__}")
    return _check_finite(value)


def _number_backward(value: Any):
    if _is_number(value):
        return _check_finite(value)
    if not isinstance(value, str):
        raise CoercionError(f"expected a number, got {type(value).__name__}")

    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = float(text)
    except ValueError:
        raise CoercionError(f"{value!r} is not numeric") from None
    # Rejects 'nan', 'inf' and overflowing literals such as '1e999'
    return _check_finite(parsed)


def _boolean_forward(value: Any) -> bool:
    if not isinstance(value, bool):
        raise CoercionError(f"expected a boolean, got {type(value).__name__}")
    return value


def _boolean_backward(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text == _TRUE_TEXT:
            return True
        if text == _FALSE_TEXT:
            return False
    raise CoercionError(f"{value!r} is not a recognised boolean")


def _date_forward(value: Any) -> str:
    if not isinstance(value, datetime):
        raise CoercionError(f"expected a datetime, got {type(value).__name__}")
    return value.isoformat()


def _date_backward(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise CoercionError(f"expected ISO-8601 text, got {type(value).__name__}")
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise CoercionError(f"{value!r} is not an ISO-8601 date/time") from None


FORWARD: Dict[str, Callable[[Any], Any]] = {
    "string": _string_forward,
    "number": _number_forward,
    "boolean": _boolean_forward,
    "date": _date_forward,
}

BACKWARD: Dict[str, Callable[[Any], Any]] = {
    "string": _string_backward,
    "number": _number_backward,
    "boolean": _boolean_backward,
    "date": _date_backward,
}


def to_resource(entity: BaseModel, mapping: EntityMapping) -> Dict[str, Any]:
    """
    Translates an entity into its resource representation.

    Args:
        entity (BaseModel): The entity to translate.
        mapping (EntityMapping): Field correspondence and coercion rules.

    Returns:
        Dict[str, Any]: The resource. Absent optional fields are omitted, never set to None.

    Raises:
        MappingError: If a required field is absent or any value fails coercion.
            Nothing is returned in that case.
    """
    resource: Dict[str, Any] = {}
    for field_name, prop in mapping.fields.items():
        value = getattr(entity, field_name, None)
        if value is None:
            if prop.optional:
                continue
            raise MappingError(MappingError.MISSING_REQUIRED_FIELD, field_name, TO_RESOURCE)
        try:
            resource[prop.to] = FORWARD[prop.type](value)
        except CoercionError as e:
            raise MappingError(MappingError.COERCION_FAILURE, field_name, TO_RESOURCE, str(e)) from e
    return resource


def from_resource(resource: Dict[str, Any], mapping: EntityMapping) -> BaseModel:
    """
    Translates a resource back into an instance of ``mapping.entity_type``.

    Raises:
        MappingError: If a required key is absent, a value fails coercion, or the
            entity type rejects the coerced values.
    """
    values: Dict[str, Any] = {}
    for field_name, prop in mapping.fields.items():
        raw = resource.get(prop.to)
        if raw is None:
            if prop.optional:
                continue
            raise MappingError(MappingError.MISSING_REQUIRED_FIELD, field_name, FROM_RESOURCE)
        try:
            values[field_name] = BACKWARD[prop.type](raw)
        except CoercionError as e:
            raise MappingError(MappingError.COERCION_FAILURE, field_name, FROM_RESOURCE, str(e)) from e

    try:
        return mapping.entity_type(**values)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = str(first["loc"][0]) if first.get("loc") else "<entity>"
        raise MappingError(MappingError.COERCION_FAILURE, field_name, FROM_RESOURCE, first["msg"]) from e


class EntityTranslator:
    """
    Anti-corruption layer between entities and backend resources.
    Binds one EntityMapping so adapters only ever see raw resource payloads.
    """

    def __init__(self, mapping: EntityMapping):
        self.mapping = mapping

    def to_resource(self, entity: BaseModel) -> Dict[str, Any]:
        return to_resource(entity, self.mapping)

    def to_domain(self, resource: Dict[str, Any]) -> BaseModel:
        return from_resource(resource, self.mapping)

    def identity_of(self, entity: BaseModel):
        return getattr(entity, self.mapping.identity_field, None)
