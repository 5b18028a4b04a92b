"""Package-to-resource attribute inheritance.

A resource's effective taxonomy is computed from its own values and those
of its owning Package:

* list fields are the de-duplicated union, package values first,
* label maps are merged key-wise,
* ``policyLevel`` is replaced: the resource value wins, then the package
  value, then the value declared on the describing document.

The computation is pure and is re-run whenever the package or the
resource changes.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from orda.models.entities import OrdEntity
from orda.models.labels import merge_labels, union_values

INHERITED_LIST_FIELDS: tuple[str, ...] = (
    "tags",
    "countries",
    "lineOfBusiness",
    "industry",
    "partOfProducts",
)
INHERITED_LABEL_FIELDS: tuple[str, ...] = ("labels", "documentationLabels")
POLICY_FIELDS: tuple[str, ...] = ("policyLevel", "customPolicyLevel")

AttributeSource = Mapping[str, Any] | OrdEntity


def _as_attributes(source: AttributeSource | None) -> Mapping[str, Any]:
    if source is None:
        return {}
    if isinstance(source, OrdEntity):
        return source.to_wire()
    return source


def _policy(*sources: Mapping[str, Any]) -> dict[str, Any]:
    for source in sources:
        if source.get("policyLevel") is not None:
            return {name: source[name] for name in POLICY_FIELDS if source.get(name) is not None}
    return {}


def effective_attributes(
    resource: AttributeSource,
    package: AttributeSource | None,
    document_policy: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Compute the post-inheritance attributes of a resource.

    Args:
        resource: The resource (model or camelCase attributes)
        package: Its owning package, or None when not (yet) resolved
        document_policy: ``policyLevel``/``customPolicyLevel`` of the document

    Example:
        >>> effective_attributes({"tags": ["b"]}, {"tags": ["a"]})["tags"]
        ['a', 'b']
    """
    own = _as_attributes(resource)
    parent = _as_attributes(package)
    effective = dict(own)

    for name in INHERITED_LIST_FIELDS:
        merged = union_values(parent.get(name), own.get(name))
        if merged:
            effective[name] = merged

    for name in INHERITED_LABEL_FIELDS:
        merged_labels = merge_labels(parent.get(name), own.get(name))
        if merged_labels:
            effective[name] = merged_labels

    for name in POLICY_FIELDS:
        effective.pop(name, None)
    effective.update(_policy(own, parent, document_policy or {}))
    return effective


def package_effective_attributes(
    package: AttributeSource, document_policy: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    """Packages inherit only the document policy level."""
    own = _as_attributes(package)
    effective = dict(own)
    for name in POLICY_FIELDS:
        effective.pop(name, None)
    effective.update(_policy(own, document_policy or {}))
    return effective
