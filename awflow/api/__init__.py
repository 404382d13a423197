"""
awflow API - FastAPI service for compiling workflows without a checkout.

Endpoints:
    POST   /api/compile/preview  - Compile markdown (plus virtual imports)
    GET    /api/health           - Health check

Usage:
    from awflow.api import create_app

    app = create_app()
"""

from .server import create_app

__all__ = ["create_app"]
