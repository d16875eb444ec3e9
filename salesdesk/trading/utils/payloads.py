"""Helpers for reading JSON request bodies into form data."""
import json
import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class PayloadError(ValueError):
    pass


def snake_keys(data: dict) -> dict:
    """``{"productId": 1}`` -> ``{"product_id": 1}``; snake_case keys pass through."""
    return {_CAMEL_BOUNDARY.sub("_", key).lower(): value for key, value in data.items()}


def read_json(request) -> dict:
    """Decode a JSON object body with keys normalised to snake_case."""
    try:
        data = json.loads(request.body or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Malformed JSON body: {exc}") from exc
    if not isinstance(data, dict):
        raise PayloadError("Request body must be a JSON object.")
    return snake_keys(data)


def read_order_payload(request):
    """
    Split an order body ``{"order": {...}, "items": [...]}`` into a header
    dict and a list of item dicts.
    """
    data = read_json(request)
    header, items = data.get("order"), data.get("items")
    if not isinstance(header, dict):
        raise PayloadError("'order' must be an object.")
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise PayloadError("'items' must be a list of objects.")
    return snake_keys(header), [snake_keys(i) for i in items]
