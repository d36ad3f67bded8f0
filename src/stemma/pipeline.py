"""The eight-stage layout pipeline and its entry points.

1. select_subgraph       -> GraphSelection
2. build_layout_model    -> LayoutModel
3. assign_generations    -> GenerationalModel
4. measure_subtrees      -> MeasuredModel
5. place_x               -> PlacedModel
6. apply_constraints     -> ConstrainedModel
7. route_edges           -> RoutedModel
8. emit_layout_result    -> LayoutResult
"""

import logging
from dataclasses import dataclass

from stemma.build_model import build_layout_model
from stemma.cache import LayoutCache
from stemma.config import (
    DEFAULT_DISPLAY_POLICY,
    DEFAULT_LAYOUT_CONFIG,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SELECTION_POLICY,
    DEFAULT_TOLERANCE,
    DisplayPolicy,
    LayoutConfig,
    SelectionPolicy,
)
from stemma.constraints import apply_constraints
from stemma.debug import DebugPipelineResult, make_snapshot
from stemma.emit import build_layout_result, emit_layout_result
from stemma.generations import assign_generations, validate_generations
from stemma.errors import LockedPositionError
from stemma.layout_types import (
    ConstrainedModel,
    GenerationalModel,
    GraphSelection,
    LayoutDiagnostics,
    LayoutResult,
    PlacedModel,
)
from stemma.measure import measure_subtrees
from stemma.models import FamilyData
from stemma.placement import place_x
from stemma.routing import route_edges
from stemma.selection import (
    expand_selection_for_display,
    find_auto_expand_person_ids,
    select_subgraph,
)
from stemma.validation import validate_layout

logger = logging.getLogger(__name__)


def empty_result() -> LayoutResult:
    return LayoutResult(positions={}, connections=[], spouse_lines=[], diagnostics=LayoutDiagnostics())


def effective_display_policy(
    data: FamilyData,
    focus_person_id: str,
    selection: GraphSelection,
    display_policy: DisplayPolicy,
) -> DisplayPolicy:
    """Switch to expanded mode when persons near the focus have several partnerships."""
    if not display_policy.auto_expand:
        return display_policy
    auto_ids = find_auto_expand_person_ids(data, focus_person_id, selection)
    if not auto_ids:
        return display_policy
    logger.debug("Auto-expanding %d persons: %s", len(auto_ids), sorted(auto_ids))
    return DisplayPolicy(
        mode="expanded",
        expanded_person_ids=frozenset(auto_ids | set(display_policy.expanded_person_ids)),
        auto_expand=True,
    )


def _constrain(
    placed: PlacedModel,
    config: LayoutConfig,
    max_iterations: int,
    tolerance: float,
    focus_person_id: str,
    stop_after_phase: str | None = None,
) -> tuple[ConstrainedModel, list[str]]:
    """Apply constraints, falling back to the Phase A layout if Phase B moves a locked card."""
    try:
        constrained = apply_constraints(
            placed,
            config,
            max_iterations,
            tolerance,
            stop_after_phase=stop_after_phase,
            focus_person_id=focus_person_id,
        )
        return constrained, []
    except LockedPositionError as exc:
        logger.warning("Ancestor placement dropped: %s", exc)
        constrained = apply_constraints(
            placed,
            config,
            max_iterations,
            tolerance,
            stop_after_phase="A",
            focus_person_id=focus_person_id,
        )
        return constrained, [str(exc)]


def _finish(
    result: LayoutResult, config: LayoutConfig, errors: list[str] | None = None
) -> LayoutResult:
    validation = validate_layout(result, config)
    errors = list(errors or []) + validation.errors
    result.diagnostics.validation_passed = not errors
    result.diagnostics.errors = errors
    if errors:
        logger.debug("Layout validation failed with %d errors", len(errors))
    return result


def run_layout_pipeline(
    data: FamilyData,
    focus_person_id: str,
    config: LayoutConfig = DEFAULT_LAYOUT_CONFIG,
    ancestor_depth: int = 2,
    descendant_depth: int = 2,
    include_spouse_ancestors: bool = False,
    include_parent_siblings: bool = False,
    include_parent_sibling_descendants: bool = False,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = DEFAULT_TOLERANCE,
    display_policy: DisplayPolicy = DEFAULT_DISPLAY_POLICY,
) -> LayoutResult:
    """
    Run the complete layout pipeline.

    Never raises for bad data: problems are reported through
    `diagnostics.validation_passed` and `diagnostics.errors`, and an unknown
    focus person yields an empty result.
    """
    selection = select_subgraph(
        data,
        focus_person_id,
        ancestor_depth,
        descendant_depth,
        include_spouse_ancestors=include_spouse_ancestors,
        include_parent_siblings=include_parent_siblings,
        include_parent_sibling_descendants=include_parent_sibling_descendants,
    )
    if selection.is_empty:
        return empty_result()

    policy = effective_display_policy(data, focus_person_id, selection, display_policy)
    selection = expand_selection_for_display(data, selection, policy)

    model = build_layout_model(data, selection, focus_person_id, policy)
    gen_model = assign_generations(model, focus_person_id)
    validate_generations(gen_model)
    measured = measure_subtrees(gen_model, config, focus_person_id)
    placed = place_x(measured, config)
    constrained, errors = _constrain(placed, config, max_iterations, tolerance, focus_person_id)
    routed = route_edges(constrained, config)
    result = emit_layout_result(routed, config)
    return _finish(result, config, errors)


def compute_layout(
    data: FamilyData,
    focus_person_id: str,
    policy: SelectionPolicy = DEFAULT_SELECTION_POLICY,
    config: LayoutConfig = DEFAULT_LAYOUT_CONFIG,
    display_policy: DisplayPolicy = DEFAULT_DISPLAY_POLICY,
) -> LayoutResult:
    """Lay out a tree with a selection policy; the spouse's ancestors are not shown."""
    return run_layout_pipeline(
        data,
        focus_person_id,
        config,
        ancestor_depth=policy.ancestor_depth,
        descendant_depth=policy.descendant_depth,
        include_spouse_ancestors=False,
        include_parent_siblings=policy.include_aunts_uncles,
        include_parent_sibling_descendants=policy.include_cousins,
        display_policy=display_policy,
    )


def build_generational_model(
    data: FamilyData,
    focus_person_id: str,
    policy: SelectionPolicy = DEFAULT_SELECTION_POLICY,
    display_policy: DisplayPolicy = DEFAULT_DISPLAY_POLICY,
) -> GenerationalModel | None:
    """Run stages 1-3 only, for graph exports. None when the focus is unknown."""
    selection = select_subgraph(
        data,
        focus_person_id,
        policy.ancestor_depth,
        policy.descendant_depth,
        include_parent_siblings=policy.include_aunts_uncles,
        include_parent_sibling_descendants=policy.include_cousins,
    )
    if selection.is_empty:
        return None
    display_policy = effective_display_policy(data, focus_person_id, selection, display_policy)
    selection = expand_selection_for_display(data, selection, display_policy)
    model = build_layout_model(data, selection, focus_person_id, display_policy)
    return assign_generations(model, focus_person_id)


@dataclass
class LayoutRequest:
    data: FamilyData
    focus_person_id: str
    policy: SelectionPolicy = DEFAULT_SELECTION_POLICY
    config: LayoutConfig = DEFAULT_LAYOUT_CONFIG
    display_policy: DisplayPolicy = DEFAULT_DISPLAY_POLICY
    cache_key: str | None = None


class LayoutEngine:
    """Object wrapper around the pipeline with an optional result cache."""

    def __init__(self, cache: LayoutCache | None = None):
        self.cache = cache

    def layout(self, request: LayoutRequest) -> LayoutResult:
        key = None
        if self.cache is not None and request.cache_key is not None:
            key = LayoutCache.make_key(
                request.cache_key,
                request.focus_person_id,
                request.policy,
                request.config,
                request.display_policy,
            )
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        result = compute_layout(
            request.data,
            request.focus_person_id,
            request.policy,
            request.config,
            request.display_policy,
        )
        if key is not None:
            self.cache.put(key, result)
        return result


def run_layout_pipeline_with_debug(
    data: FamilyData,
    focus_person_id: str,
    config: LayoutConfig = DEFAULT_LAYOUT_CONFIG,
    ancestor_depth: int = 2,
    descendant_depth: int = 2,
    include_spouse_ancestors: bool = False,
    include_parent_siblings: bool = False,
    include_parent_sibling_descendants: bool = False,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = DEFAULT_TOLERANCE,
    display_policy: DisplayPolicy = DEFAULT_DISPLAY_POLICY,
    debug_step: int = 8,
    debug_phase: str | None = None,
) -> DebugPipelineResult:
    """
    Run the pipeline up to `debug_step`, recording a snapshot after each step.

    Stopping at steps 1-4 returns an empty result, step 5 returns boxes
    without edges, step 6 (or any `debug_phase`) returns the constrained
    positions without edges, and step 7 returns the emitted result without
    the final validation sweep.
    """
    if debug_step not in range(1, 9):
        raise ValueError(f"debug_step must be between 1 and 8, got {debug_step}")
    if debug_phase not in (None, "A", "B"):
        raise ValueError(f"debug_phase must be 'A' or 'B', got {debug_phase}")

    snapshots = []

    selection = select_subgraph(
        data,
        focus_person_id,
        ancestor_depth,
        descendant_depth,
        include_spouse_ancestors=include_spouse_ancestors,
        include_parent_siblings=include_parent_siblings,
        include_parent_sibling_descendants=include_parent_sibling_descendants,
    )
    policy = effective_display_policy(data, focus_person_id, selection, display_policy)
    selection = expand_selection_for_display(data, selection, policy)
    snapshots.append(make_snapshot(1, config, selection=selection))
    if debug_step == 1 or selection.is_empty:
        return DebugPipelineResult(empty_result(), snapshots)

    model = build_layout_model(data, selection, focus_person_id, policy)
    snapshots.append(make_snapshot(2, config, selection=selection, model=model))
    if debug_step == 2:
        return DebugPipelineResult(empty_result(), snapshots)

    gen_model = assign_generations(model, focus_person_id)
    state = dict(selection=selection, model=model, gen_model=gen_model)
    snapshots.append(make_snapshot(3, config, **state))
    if debug_step == 3:
        return DebugPipelineResult(empty_result(), snapshots)

    measured = measure_subtrees(gen_model, config, focus_person_id)
    state["measured"] = measured
    snapshots.append(make_snapshot(4, config, **state))
    if debug_step == 4:
        return DebugPipelineResult(empty_result(), snapshots)

    placed = place_x(measured, config)
    snapshots.append(make_snapshot(5, config, placed=placed, **state))
    if debug_step == 5:
        return DebugPipelineResult(build_layout_result(placed, config), snapshots)

    constrained, errors = _constrain(
        placed, config, max_iterations, tolerance, focus_person_id, stop_after_phase=debug_phase
    )
    state.update(placed=constrained.placed, constrained=constrained)
    snapshots.append(make_snapshot(6, config, **state))
    if debug_step == 6 or debug_phase is not None:
        partial = build_layout_result(
            constrained.placed,
            config,
            iterations=constrained.iterations,
            phases_run=constrained.phases_run,
            routed_edges=False,
        )
        partial.diagnostics.errors = errors
        return DebugPipelineResult(partial, snapshots)

    routed = route_edges(constrained, config)
    state["routed"] = routed
    snapshots.append(make_snapshot(7, config, **state))
    if debug_step == 7:
        partial = emit_layout_result(routed, config)
        partial.diagnostics.errors = errors
        return DebugPipelineResult(partial, snapshots)

    result = _finish(emit_layout_result(routed, config), config, errors)
    snapshots.append(make_snapshot(8, config, result=result, **state))
    return DebugPipelineResult(result, snapshots)
