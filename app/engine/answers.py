"""
Answer merge reducer.

Every capture path (live input, periodic autosave, last-chance capture,
final submit) is reconciled through ``merge_answers``. Incoming values
win per key, but a blank incoming value never erases an answer that
already exists.
"""

from functools import reduce
from typing import Dict, Iterable, Mapping, Optional


def is_blank(value: Optional[str]) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def merge_answers(
    existing: Optional[Mapping[str, Optional[str]]],
    incoming: Optional[Mapping[str, Optional[str]]],
) -> Dict[str, str]:
    merged: Dict[str, str] = {
        str(k): v for k, v in (existing or {}).items() if not is_blank(v)
    }
    for key, value in (incoming or {}).items():
        if is_blank(value):
            continue
        merged[str(key)] = value
    return merged


def merge_all(captures: Iterable[Optional[Mapping[str, Optional[str]]]]) -> Dict[str, str]:
    """Fold several captures left to right; later captures win per key."""
    return reduce(merge_answers, captures, {})


def answered_count(answers: Optional[Mapping[str, Optional[str]]]) -> int:
    return sum(1 for v in (answers or {}).values() if not is_blank(v))
