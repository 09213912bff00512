"""
Specialties a specialist can offer. Single source of truth for the backend.
"""
from typing import Any

SPECIALTIES: list[dict[str, str]] = [
    {"id": "santehnik", "label": "Сантехник"},
    {"id": "elektrik", "label": "Электрик"},
    {"id": "cleaning", "label": "Уборка / Клининг"},
    {"id": "cargo", "label": "Грузоперевозки"},
    {"id": "repair", "label": "Ремонт техники"},
    {"id": "loader", "label": "Грузчик"},
]

SPECIALTY_IDS: frozenset[str] = frozenset(s["id"] for s in SPECIALTIES)


def is_allowed_specialty_id(value: Any) -> bool:
    return isinstance(value, str) and value in SPECIALTY_IDS


def filter_allowed_specialty_ids(values: Any) -> list[str]:
    """Keep only known specialty ids, preserving order. Non-list input -> []."""
    if not isinstance(values, (list, tuple, set, frozenset)):
        return []
    return [v for v in values if is_allowed_specialty_id(v)]
