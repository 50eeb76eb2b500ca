"""News ingestion pipeline: RSS/Atom sync into a fingerprinted, chunked article store."""

__version__ = "0.1.0"
