# Overview: Request parsing helpers shared by the API blueprints.

from flask import request

from ..errors import ValidationError
from ..validation import coerce_int


def json_body() -> dict:
    """The request's JSON object; an absent body counts as {}."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def int_arg(name: str, default: int | None = None, *, minimum: int | None = None, maximum: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    value = coerce_int(raw, name)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        value = maximum
    return value


def str_arg(name: str) -> str | None:
    value = request.args.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def bool_arg(name: str) -> bool | None:
    """true/false style query flag; absent or empty means no filter."""
    value = str_arg(name)
    if value is None:
        return None
    lowered = value.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false")
