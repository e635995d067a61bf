"""
API module for SchemaBridge.

This module provides the external interfaces:
- ConversionService (batch conversion, ConversionReview adapter)
- HTTP server (FastAPI) exposing conversion and migration bookkeeping

Invariants:
    - Item-level failures are reported inline, never as request errors
    - The HTTP layer adds transport only; semantics live in the service

How to change safely:
    - Add new endpoints, don't change existing response shapes
    - Keep HTTP error codes aligned with SchemaBridgeError codes
"""

from .http_server import create_http_app
from .service import ConversionRequest, ConversionResponse, ConversionService, ItemError, ItemResult
from .settings import HttpSettings

__all__ = [
    "ConversionRequest",
    "ConversionResponse",
    "ConversionService",
    "HttpSettings",
    "ItemError",
    "ItemResult",
    "create_http_app",
]
