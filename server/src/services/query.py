from __future__ import annotations

import functools
import unicodedata
from typing import Any, List, Mapping, Optional, Sequence, get_args

from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..schemas import EnrichedNodeRecord, QueryParams, SortField, SortOrder, StatusFilter

DEFAULT_LIMIT = 100
DEFAULT_SORT_ORDER = "desc"

STATUS_VALUES = get_args(StatusFilter)
SORT_FIELDS = get_args(SortField)
SORT_ORDERS = get_args(SortOrder)

_MESSAGES = {
    "limit": "Limit must be a number between 1 and 1000",
    "offset": "Offset must be a non-negative number",
    "status": "Status must be one of: " + ", ".join(STATUS_VALUES),
    "sortBy": "SortBy must be one of: " + ", ".join(SORT_FIELDS),
    "sortOrder": 'SortOrder must be either "asc" or "desc"',
}


def _first(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_query_params(raw: Mapping[str, Any]) -> QueryParams:
    """Validate raw query-string values into ``QueryParams``.

    Empty values count as absent. Out-of-range values are rejected with
    ``ValidationError``, never clamped.
    """
    values = {key: _first(raw, key) for key in _MESSAGES}
    values = {key: value for key, value in values.items() if value is not None}
    try:
        return QueryParams.model_validate(values)
    except PydanticValidationError as exc:
        messages = []
        for error in exc.errors():
            field = str(error["loc"][0]) if error.get("loc") else ""
            message = _MESSAGES.get(field, error.get("msg", "Invalid parameters"))
            if message not in messages:
                messages.append(message)
        raise ValidationError("; ".join(messages) or "Invalid parameters") from exc


def filter_by_status(records: Sequence[EnrichedNodeRecord], status: Optional[str]) -> List[EnrichedNodeRecord]:
    """Keep online nodes for ``active``; every other non-``all`` status keeps offline nodes."""
    if not status or status == "all":
        return list(records)
    if status == "active":
        return [record for record in records if record.is_online]
    return [record for record in records if not record.is_online]


# Root collation order of ASCII punctuation and symbols; all of them sort
# before digits, and digits before letters.
_ASCII_MARKS = "_-,;:!?.'\"()[]{}@*/\\&#%`^+<=>|~$"
_MARK_RANK = {ch: rank for rank, ch in enumerate(_ASCII_MARKS)}


def _primary_weight(ch: str) -> tuple[int, int]:
    if ch in _MARK_RANK:
        return 1, _MARK_RANK[ch]
    category = unicodedata.category(ch)
    if category[0] in ("Z", "C"):
        return 0, ord(ch)
    if category[0] == "P":
        return 1, len(_ASCII_MARKS) + ord(ch)
    if category[0] == "S":
        return 2, ord(ch)
    if category == "Nd":
        return 3, unicodedata.digit(ch)
    return 4, ord(ch)


def collation_key(value: str) -> tuple[tuple[tuple[int, int], ...], str, str]:
    """Locale-style sort key: accents and case only break ties.

    Whitespace, punctuation and symbols order before digits, digits before
    letters. Lower case orders before upper case at the final level, which
    matches the default Unicode collation rather than code point order.
    """
    decomposed = unicodedata.normalize("NFKD", value)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    primary = tuple(_primary_weight(ch) for ch in base.casefold())
    return primary, decomposed.casefold(), value.swapcase()


def _compare_strings(left: str, right: str) -> int:
    a, b = collation_key(left), collation_key(right)
    return (a > b) - (a < b)


def _compare_values(left: Any, right: Any) -> float:
    if isinstance(left, str):
        return _compare_strings(left, right if isinstance(right, str) else str(right))
    if isinstance(right, str):
        return _compare_strings(str(left), right)
    return float(left) - float(right)


def sort_records(
    records: Sequence[EnrichedNodeRecord], sort_by: str, sort_order: Optional[str] = None
) -> List[EnrichedNodeRecord]:
    """Stable sort by ``sort_by``; missing values compare as 0, default order is descending."""
    descending = (sort_order or DEFAULT_SORT_ORDER) == "desc"

    def value_of(record: EnrichedNodeRecord) -> Any:
        value = getattr(record, sort_by, None)
        return 0 if value is None else value

    def compare(a: EnrichedNodeRecord, b: EnrichedNodeRecord) -> float:
        if descending:
            return _compare_values(value_of(b), value_of(a))
        return _compare_values(value_of(a), value_of(b))

    return sorted(records, key=functools.cmp_to_key(compare))


def paginate(records: Sequence[EnrichedNodeRecord], limit: Optional[int], offset: Optional[int]) -> List[EnrichedNodeRecord]:
    if limit is None and offset is None:
        return list(records)
    start = offset or 0
    size = limit if limit is not None else DEFAULT_LIMIT
    return list(records[start : start + size])


def process(records: Sequence[EnrichedNodeRecord], params: QueryParams) -> List[EnrichedNodeRecord]:
    """Filter, then sort, then paginate ``records`` according to ``params``."""
    result = filter_by_status(records, params.status)
    if params.sort_by:
        result = sort_records(result, params.sort_by, params.sort_order)
    return paginate(result, params.limit, params.offset)
