"""EBR API: multi-tenant Electronic Batch Record backend."""

__version__ = "1.0.0"
