"""
FastAPI server for the awflow compile preview.

Usage:
    # Run standalone
    python -m awflow.api.server --port 5001

    # Or via factory
    from awflow.api import create_app
    app = create_app(repo_root=Path("."))
    uvicorn.run(app, port=5001)

API Structure:
    /api/compile/preview  - Compile a workflow document in memory
    /api/health           - Health check
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .routes import compile_router

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Response for health check endpoint."""
    status: str
    version: str
    repo_root: Optional[str] = None


def create_app(
    repo_root: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        repo_root: Repository root whose action pin cache previews use.
            Without it previews run with an empty cache.
        enable_cors: Whether to enable CORS middleware.
    """
    app = FastAPI(
        title="awflow API",
        description="Compile preview for agentic workflow documents.",
        version=API_VERSION,
    )
    app.state.repo_root = Path(repo_root) if repo_root is not None else None

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(compile_router, prefix="/api")

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        root = app.state.repo_root
        return HealthResponse(
            status="ok",
            version=API_VERSION,
            repo_root=str(root) if root is not None else None,
        )

    logger.debug("API app created (repo_root=%s, cors=%s)", repo_root, enable_cors)
    return app


def main():
    """Run the API server."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="awflow compile preview server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5001, help="Port to bind to")
    parser.add_argument("--repo-root", default=None, help="Repository root for action pins")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--no-cors", action="store_true", help="Disable CORS")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    repo_root = Path(args.repo_root) if args.repo_root else None
    app = create_app(repo_root=repo_root, enable_cors=not args.no_cors)

    print(f"Starting awflow API server at http://{args.host}:{args.port}")
    print("  POST   /api/compile/preview  - Compile a workflow document")
    print("  GET    /api/health           - Health check")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
