"""Shared field validators and constrained types for ORD models."""

import re
from typing import Annotated

from pydantic import AfterValidator, Field

from orda.models.constants import (
    CORRELATION_ID_PATTERN,
    COUNTRY_CODE_PATTERN,
    MAX_TITLE_LENGTH,
    SPECIFICATION_ID_PATTERN,
    TAG_PATTERN,
)
from orda.models.ordid import validate_ord_id

_CORRELATION_ID_RE = re.compile(CORRELATION_ID_PATTERN)
_SPECIFICATION_ID_RE = re.compile(SPECIFICATION_ID_PATTERN)


def validate_single_line(v: str) -> str:
    """Reject strings containing line breaks (titles, short descriptions)."""
    if "\n" in v or "\r" in v:
        raise ValueError("must not contain line breaks")
    return v


def validate_correlation_id(v: str) -> str:
    if not _CORRELATION_ID_RE.match(v):
        raise ValueError(f"Correlation ID must follow '<namespace>:<type>:<localId>', got: {v!r}")
    return v


def validate_specification_id(v: str) -> str:
    """Validate a Specification ID (``customType``, ``customPolicyLevel``...)."""
    if not _SPECIFICATION_ID_RE.match(v):
        raise ValueError(f"Specification ID must follow '<vendor>:<name>:v<major>', got: {v!r}")
    return v


Title = Annotated[
    str,
    Field(min_length=1, max_length=MAX_TITLE_LENGTH),
    AfterValidator(validate_single_line),
]
ShortDescription = Annotated[
    str,
    Field(min_length=1, max_length=MAX_TITLE_LENGTH),
    AfterValidator(validate_single_line),
]
Tag = Annotated[str, Field(pattern=TAG_PATTERN)]
CountryCode = Annotated[str, Field(pattern=COUNTRY_CODE_PATTERN)]
OrdIdRef = Annotated[str, AfterValidator(validate_ord_id)]
CorrelationIdStr = Annotated[str, AfterValidator(validate_correlation_id)]
SpecificationId = Annotated[str, AfterValidator(validate_specification_id)]
