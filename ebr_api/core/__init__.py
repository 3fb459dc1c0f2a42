"""
Core application utilities for settings, logging, errors and FastAPI dependencies.

This package provides:
- Application-level settings (separate from DB settings)
- Domain error taxonomy and the role/operation access policy
- Dependency helpers (session identity, tenant-scoped DB session)
"""
