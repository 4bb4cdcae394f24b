"""HTTP surface for dynamic mode."""

from .app import AssetMiddleware, create_app, run_service

__all__ = ["AssetMiddleware", "create_app", "run_service"]
