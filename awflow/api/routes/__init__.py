"""
Routes package for the awflow API.

This package contains the FastAPI routers for:
- compile: Compile preview of workflow documents
"""

from .compile import router as compile_router

__all__ = [
    "compile_router",
]
