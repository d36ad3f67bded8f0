"""Deterministic layout of genealogical family trees around a focus person."""

from stemma.cache import LayoutCache
from stemma.config import (
    DEFAULT_DISPLAY_POLICY,
    DEFAULT_LAYOUT_CONFIG,
    DEFAULT_SELECTION_POLICY,
    DisplayPolicy,
    LayoutConfig,
    SelectionPolicy,
)
from stemma.errors import DataFormatError, LayoutError, LockedPositionError
from stemma.layout_types import LayoutDiagnostics, LayoutResult, Position
from stemma.models import FamilyData, Partnership, Person
from stemma.pipeline import (
    LayoutEngine,
    LayoutRequest,
    compute_layout,
    run_layout_pipeline,
    run_layout_pipeline_with_debug,
)

__all__ = [
    "DEFAULT_DISPLAY_POLICY",
    "DEFAULT_LAYOUT_CONFIG",
    "DEFAULT_SELECTION_POLICY",
    "DataFormatError",
    "DisplayPolicy",
    "FamilyData",
    "LayoutCache",
    "LayoutConfig",
    "LayoutDiagnostics",
    "LayoutEngine",
    "LayoutError",
    "LayoutRequest",
    "LayoutResult",
    "LockedPositionError",
    "Partnership",
    "Person",
    "Position",
    "SelectionPolicy",
    "compute_layout",
    "run_layout_pipeline",
    "run_layout_pipeline_with_debug",
]
