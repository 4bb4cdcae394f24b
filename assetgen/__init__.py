"""Build and serve text web assets generated by Python modules."""

from .engine import AssetEngine, RenderPlan
from .models import AssetKind, AssetResult, Fingerprint, ModuleRef, Origin, SourceUnit
from .orchestrator import BuildReport, DynamicResponse, Orchestrator

__all__ = [
    "AssetEngine",
    "AssetKind",
    "AssetResult",
    "BuildReport",
    "DynamicResponse",
    "Fingerprint",
    "ModuleRef",
    "Orchestrator",
    "Origin",
    "RenderPlan",
    "SourceUnit",
]
