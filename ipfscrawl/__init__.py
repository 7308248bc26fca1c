"""Document types, metadata extractors and OpenSearch and Redis indexes for IPFS content."""

__version__ = "0.1.0"