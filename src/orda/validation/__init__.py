"""Document parsing and validation.

Example:
    >>> from orda.validation import parse_document
    >>> result = parse_document(b'{"openResourceDiscovery": "1.7"}')
    >>> result.ok
    True
"""

from orda.validation.parser import ParseResult, parse_document
from orda.validation.validator import CompositeValidator, DefaultValidator, Validator
from orda.validation.versions import VersionRules, rules_for

__all__ = [
    "CompositeValidator",
    "DefaultValidator",
    "ParseResult",
    "Validator",
    "VersionRules",
    "parse_document",
    "rules_for",
]
