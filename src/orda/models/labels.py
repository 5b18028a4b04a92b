"""Label and documentation label maps.

Labels are open ``key -> ordered list of strings`` maps attached to most
ORD entities. They are inherited from a Package to the resources it
contains and combined across documents. Both cases use the same rule:

* values of the same key are merged,
* duplicate values of the same key are removed,
* first-seen order is kept.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Annotated, TypeAlias

from pydantic import AfterValidator

from orda.models.constants import LABEL_KEY_PATTERN

_LABEL_KEY_RE = re.compile(LABEL_KEY_PATTERN)

LabelMap: TypeAlias = Mapping[str, list[str]]


def _check_label_keys(value: dict[str, list[str]]) -> dict[str, list[str]]:
    invalid = [k for k in value if not _LABEL_KEY_RE.match(k)]
    if invalid:
        raise ValueError(f"Label keys must match {LABEL_KEY_PATTERN}: {invalid}")
    return value


def _check_documentation_label_keys(value: dict[str, list[str]]) -> dict[str, list[str]]:
    invalid = [k for k in value if "\n" in k or "\r" in k]
    if invalid:
        raise ValueError(f"Documentation label keys must not contain line breaks: {invalid}")
    return value


Labels = Annotated[dict[str, list[str]], AfterValidator(_check_label_keys)]
"""Generic labels; keys restricted to ``[a-zA-Z0-9-_.]``."""

DocumentationLabels = Annotated[
    dict[str, list[str]], AfterValidator(_check_documentation_label_keys)
]
"""Documentation labels; any plain-text key without line breaks."""


def union_values(*value_lists: Iterable[str] | None) -> list[str]:
    """Ordered, de-duplicated union of string lists.

    Example:
        >>> union_values(["a", "b"], ["b", "c"], None)
        ['a', 'b', 'c']
    """
    seen: dict[str, None] = {}
    for values in value_lists:
        if not values:
            continue
        for value in values:
            seen.setdefault(value, None)
    return list(seen)


def merge_labels(*maps: LabelMap | None) -> dict[str, list[str]]:
    """Key-wise union of label maps.

    Example:
        >>> merge_labels({"k": ["x"]}, {"k": ["y", "x"], "z": ["1"]})
        {'k': ['x', 'y'], 'z': ['1']}
    """
    merged: dict[str, list[str]] = {}
    for label_map in maps:
        if not label_map:
            continue
        for key, values in label_map.items():
            merged[key] = union_values(merged.get(key), values)
    return merged
