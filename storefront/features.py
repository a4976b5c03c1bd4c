import math
import re
from typing import Any, Dict, List, Mapping

from .errors import InvalidQueryParameter

# Query-string keys that shape the request rather than filter documents.
EXCLUDED_KEYS = ("keyword", "page", "limit")

RANGE_OPERATORS = {
    "gte": "$gte",
    "lte": "$lte",
    "gt": "$gt",
    "lt": "$lt",
    "eq": "$eq",
}

NUMERIC_FIELDS = {
    "price": float,
    "ratings": float,
    "stock": int,
    "numOfReviews": int,
}

# BSON integers are signed 64-bit.
MAX_INT64 = 2**63 - 1
MIN_INT64 = -(2**63)

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_BRACKETED_KEY = re.compile(r"^([^\[\]]+)\[([^\[\]]*)\]$")


def _iter_pairs(args):
    # werkzeug MultiDict.items() yields the first value of each key
    if hasattr(args, "items"):
        return list(args.items())
    return list(args)


def parse_query_params(args) -> Dict[str, Any]:
    """Expand ``price[gte]=10`` style keys into nested mappings."""
    parsed: Dict[str, Any] = {}
    for raw_key, value in _iter_pairs(args or {}):
        key = str(raw_key)
        match = _BRACKETED_KEY.match(key)
        if match:
            field_name, operator = match.group(1), match.group(2)
            existing = parsed.setdefault(field_name, {})
            if not isinstance(existing, dict):
                raise InvalidQueryParameter(
                    f"Query parameter '{field_name}' cannot be both a value and a range."
                )
            existing[operator] = value
            continue

        if "[" in key or "]" in key:
            raise InvalidQueryParameter(f"Malformed query parameter '{key}'.")

        if isinstance(value, Mapping):
            value = dict(value)
        if key in parsed and isinstance(parsed[key], dict) != isinstance(value, dict):
            raise InvalidQueryParameter(
                f"Query parameter '{key}' cannot be both a value and a range."
            )
        if isinstance(value, dict) and isinstance(parsed.get(key), dict):
            parsed[key].update(value)
        else:
            parsed[key] = value
    return parsed


def _coerce(field_name: str, value: Any):
    if isinstance(value, (list, tuple, dict)):
        raise InvalidQueryParameter(f"Query parameter '{field_name}' must be a single value.")

    caster = NUMERIC_FIELDS.get(field_name)
    if caster is None:
        return str(value)

    if isinstance(value, bool):
        raise InvalidQueryParameter(f"Query parameter '{field_name}' must be numeric.")
    try:
        numeric = caster(value)
    except (TypeError, ValueError):
        raise InvalidQueryParameter(f"Query parameter '{field_name}' must be numeric.") from None
    if isinstance(numeric, float) and not math.isfinite(numeric):
        raise InvalidQueryParameter(f"Query parameter '{field_name}' must be numeric.")
    if isinstance(numeric, int) and not MIN_INT64 <= numeric <= MAX_INT64:
        raise InvalidQueryParameter(f"Query parameter '{field_name}' is out of range.")
    return numeric


class ApiFeatures:
    """Chainable search/filter/pagination over a MongoDB collection.

    Each instance owns its own filter document, so a count and a page can be
    built from two instances without one's skip/limit leaking into the other.
    """

    def __init__(self, collection, query_params):
        self.collection = collection
        self.query_params = parse_query_params(query_params)
        self.filters: Dict[str, Any] = {}
        self.skip = 0
        self.limit = 0

    def search(self) -> "ApiFeatures":
        keyword = self.query_params.get("keyword")
        if isinstance(keyword, str) and keyword.strip():
            self.filters["name"] = {
                "$regex": re.escape(keyword.strip()),
                "$options": "i",
            }
        return self

    def filter(self) -> "ApiFeatures":
        for key, value in self.query_params.items():
            if key in EXCLUDED_KEYS:
                continue
            if not _FIELD_NAME.match(key):
                raise InvalidQueryParameter(f"Unsupported filter field '{key}'.")

            if isinstance(value, dict):
                condition = {}
                for operator, operand in value.items():
                    mongo_operator = RANGE_OPERATORS.get(operator)
                    if mongo_operator is None:
                        raise InvalidQueryParameter(
                            f"Unsupported filter operator '{operator}' for '{key}'."
                        )
                    condition[mongo_operator] = _coerce(key, operand)
                if not condition:
                    raise InvalidQueryParameter(f"Empty range filter for '{key}'.")
                self.filters[key] = condition
            else:
                self.filters[key] = _coerce(key, value)
        return self

    def paginate(self, page_size: int) -> "ApiFeatures":
        raw_page = self.query_params.get("page", 1)
        if raw_page in (None, ""):
            raw_page = 1
        try:
            current_page = int(raw_page)
        except (TypeError, ValueError):
            raise InvalidQueryParameter("Query parameter 'page' must be a positive integer.") from None
        if current_page < 1:
            raise InvalidQueryParameter("Query parameter 'page' must be a positive integer.")

        skip = page_size * (current_page - 1)
        if skip > MAX_INT64:
            raise InvalidQueryParameter("Query parameter 'page' is out of range.")

        self.skip = skip
        self.limit = page_size
        return self

    def count(self) -> int:
        return self.collection.count_documents(self.filters)

    def fetch(self) -> List[Dict]:
        cursor = self.collection.find(self.filters).sort("_id", 1)
        if self.skip:
            cursor = cursor.skip(self.skip)
        if self.limit:
            cursor = cursor.limit(self.limit)
        return list(cursor)
