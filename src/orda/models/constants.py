"""Constants for the ORD aggregator.

Protocol-wide constants used across the codebase.
"""

# ORD specification versions this engine can validate
SUPPORTED_SPEC_VERSIONS: tuple[str, ...] = ("1.0", "1.1", "1.2", "1.3", "1.4", "1.5", "1.6", "1.7")
LATEST_SPEC_VERSION = SUPPORTED_SPEC_VERSIONS[-1]

# Well-known discovery endpoint (RFC 8615)
WELLKNOWN_PATH = "/.well-known/open-resource-discovery"
WELLKNOWN_CONFIG_KEY = "openResourceDiscoveryV1"

MAX_TITLE_LENGTH = 255
"""Ceiling for titles and short descriptions (MUST NOT exceed 255 chars)."""

TOMBSTONE_GRACE_DAYS = 31
"""Minimum retention of a tombstone after its removalDate.

Suppressed entities stay in the graph for this window and only then
become eligible for physical purge.
"""

# Free-text tag fields: no special characters except - _ . / and space
TAG_PATTERN = r"^[a-zA-Z0-9_./ \-]*$"
LABEL_KEY_PATTERN = r"^[a-zA-Z0-9_.\-]*$"

# <namespace>:<type>:<localId>
CORRELATION_ID_PATTERN = r"^([a-z0-9]+(?:[.][a-z0-9]+)*):([a-zA-Z0-9._\-]+):([a-zA-Z0-9._\-/]+)$"

# <vendor>:<type>:<name>[:v<major>]
SPECIFICATION_ID_PATTERN = r"^([a-z0-9]+(?:[.][a-z0-9]+)*):([a-zA-Z0-9._\-]+):v([0-9]+)$"

COUNTRY_CODE_PATTERN = r"^[A-Z]{2}$"

# Retry and backoff constants for provider fetches
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
"""Initial backoff delay in seconds: base_delay * (2 ** attempt) + jitter."""

DEFAULT_MAX_DELAY = 60.0
"""Cap on a single backoff delay in seconds."""

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENT_PROVIDERS = 8
DEFAULT_MAX_CONCURRENT_FETCHES = 4
