"""Stage 8: final positions, normalization and diagnostics."""

import copy
import logging

from stemma.config import LayoutConfig
from stemma.layout_types import (
    Connection,
    LayoutDiagnostics,
    LayoutResult,
    PlacedModel,
    Position,
    RoutedModel,
    SpouseLine,
)
from stemma.routing import generation_y

logger = logging.getLogger(__name__)


def normalize(
    positions: dict[str, Position],
    connections: list[Connection],
    spouse_lines: list[SpouseLine],
    branch_bounds: dict[str, tuple[float, float]],
    padding: float,
) -> float:
    """
    Shift everything horizontally so the leftmost card starts at `padding`.

    Returns:
        The applied shift (0 when already normalized or nothing is placed)
    """
    if not positions:
        return 0.0
    shift = padding - min(p.x for p in positions.values())
    if abs(shift) < 0.1:
        return 0.0

    for person_id, pos in positions.items():
        positions[person_id] = Position(pos.x + shift, pos.y)
    for conn in connections:
        conn.shift_x(shift)
    for line in spouse_lines:
        line.x_min += shift
        line.x_max += shift
    for branch_id, (low, high) in branch_bounds.items():
        branch_bounds[branch_id] = (low + shift, high + shift)
    return shift


def build_layout_result(
    placed: PlacedModel,
    config: LayoutConfig,
    connections: list[Connection] | None = None,
    spouse_lines: list[SpouseLine] | None = None,
    iterations: int = 0,
    phases_run: list[str] | None = None,
    routed_edges: bool = True,
) -> LayoutResult:
    """Assemble a LayoutResult from placed positions and optional routing output."""
    gen_model = placed.measured.gen_model
    model = gen_model.model
    gen_y = generation_y(gen_model.min_gen, gen_model.max_gen, config)

    positions: dict[str, Position] = {}
    for person_id in model.persons:
        x = placed.person_x.get(person_id)
        gen = gen_model.person_gen.get(person_id)
        if x is None or gen not in gen_y:
            continue
        positions[person_id] = Position(x, gen_y[gen])

    # Copies, so routed models and debug snapshots keep their coordinates
    connections = copy.deepcopy(connections or [])
    spouse_lines = copy.deepcopy(spouse_lines or [])
    branch_bounds = {
        branch_id: (branch.min_x, branch.max_x)
        for branch_id, branch in placed.measured.branches.items()
    }
    normalize(positions, connections, spouse_lines, branch_bounds, config.padding)

    diagnostics = LayoutDiagnostics(
        total_persons=len(model.persons),
        total_unions=len(model.unions),
        generation_range=(gen_model.min_gen, gen_model.max_gen),
        iterations=iterations,
        branch_count=len(placed.measured.branches),
        phases_run=list(phases_run or []),
        routed_edges=routed_edges,
    )
    return LayoutResult(
        positions=positions,
        connections=connections,
        spouse_lines=spouse_lines,
        diagnostics=diagnostics,
        branch_bounds=branch_bounds,
    )


def emit_layout_result(routed: RoutedModel, config: LayoutConfig) -> LayoutResult:
    """
    Emit the final layout result.

    y = padding + (gen - min_gen) * (card_height + vertical_gap). The
    diagnostics start out as passed; the pipeline's validation sweep fills
    in the verdict.
    """
    constrained = routed.constrained
    result = build_layout_result(
        constrained.placed,
        config,
        routed.connections,
        routed.spouse_lines,
        iterations=constrained.iterations,
        phases_run=constrained.phases_run,
    )
    logger.debug(
        "Emitted %d positions, %d connections", len(result.positions), len(result.connections)
    )
    return result
