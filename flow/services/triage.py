"""Triage category to queue priority mapping (lower is served first)."""
from __future__ import annotations

from typing import Union

EMERGENCY = 1
VERY_URGENT = 2
URGENT = 3
STANDARD = 4
NON_URGENT = 5

MIN_PRIORITY = 0
MAX_PRIORITY = 2147483647

CATEGORY_PRIORITY = {
    'emergency': EMERGENCY,
    'very urgent': VERY_URGENT,
    'urgent': URGENT,
    'standard': STANDARD,
    'routine': STANDARD,
    'non-urgent': NON_URGENT,
}


def priority_for_category(category: str) -> int:
    key = ' '.join((category or '').replace('_', ' ').split()).lower()
    key = key.replace('non urgent', 'non-urgent')
    try:
        return CATEGORY_PRIORITY[key]
    except KeyError:
        raise ValueError(f'Unknown triage category: {category!r}')


def resolve_priority(value: Union[int, str, None], default: int = STANDARD) -> int:
    """Accept a numeric rank or a category label."""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ValueError('Priority must be a number or a triage category')
    if isinstance(value, int):
        return _in_range(value)
    text = str(value).strip()
    if text.lstrip('-').isdigit():
        return _in_range(int(text))
    return priority_for_category(text)


def _in_range(rank: int) -> int:
    if not MIN_PRIORITY <= rank <= MAX_PRIORITY:
        raise ValueError(f'Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}')
    return rank
