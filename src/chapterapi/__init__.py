"""Chapter API - chapter records with a cache-aside listing and rate limiting."""

__version__ = "0.1.0"
