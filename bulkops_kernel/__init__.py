"""
bulkops kernel -- shared infrastructure for the batch operation orchestrator.

Provides:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- Injectable clocks
- SQLAlchemy declarative base and engine helpers
"""

__version__ = "0.1.0"
