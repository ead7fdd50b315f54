# Overview: Structural diff between two entity snapshots.

"""
Change Detection

detect_changes() is the sole gate for "updated"-class audit writes: an empty
ChangeSet means nothing changed and nothing is logged.

Values are compared by canonical JSON (sorted keys), so a variant map
{"Cor": "Azul", "Tamanho": "M"} equals {"Tamanho": "M", "Cor": "Azul"}.

Diff values are a closed set of variants: None, str, int, bool, or a
str -> str mapping. Anything else is a programming error and raises TypeError.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Mapping, Union


DiffValue = Union[None, str, int, bool, dict]


def _check_value(field: str, value) -> DiffValue:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, Mapping):
        for k, v in value.items():
            if not isinstance(k, str) or not isinstance(v, str):
                raise TypeError(f"{field}: mapping values must be str -> str")
        return dict(value)
    raise TypeError(f"{field}: unsupported diff value type {type(value).__name__}")


def _canonical(value) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class FieldChange:
    old: DiffValue
    new: DiffValue

    def to_json(self) -> dict:
        return {"old": self.old, "new": self.new}


class ChangeSet(dict):
    """Mapping field -> FieldChange."""

    def to_json(self) -> dict:
        return {field: change.to_json() for field, change in self.items()}

    @classmethod
    def from_pairs(cls, pairs: Mapping[str, tuple]) -> "ChangeSet":
        """Build from {field: (old, new)}, validating the value variants."""
        result = cls()
        for field, (old, new) in pairs.items():
            result[field] = FieldChange(_check_value(field, old), _check_value(field, new))
        return result


def detect_changes(old: Mapping, new: Mapping, tracked_fields: Iterable[str]) -> ChangeSet:
    """
    Return a ChangeSet for exactly the tracked fields whose values differ.

    Fields missing from a snapshot are treated as None. Fields with equal
    values never appear in the result.
    """
    changes = ChangeSet()
    for field in tracked_fields:
        old_value = _check_value(field, old.get(field))
        new_value = _check_value(field, new.get(field))
        if _canonical(old_value) != _canonical(new_value):
            changes[field] = FieldChange(old=old_value, new=new_value)
    return changes
