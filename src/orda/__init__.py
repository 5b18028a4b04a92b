"""ORD Aggregator: ingestion, validation and merging of Open Resource Discovery metadata.

The package is organised along the aggregation pipeline:

- ``orda.validation``: parse a single ORD document and collect structural issues
- ``orda.resolver``: two-pass ORD ID reference resolution
- ``orda.inheritance``: package-to-resource attribute propagation
- ``orda.lifecycle``: version and release status rules
- ``orda.tombstones``: removal markers and grace-period purging
- ``orda.merge``: the single authoritative metadata graph
- ``orda.crawler``: per-provider discovery and fetch scheduling
- ``orda.query``: read-only access to the merged graph
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
