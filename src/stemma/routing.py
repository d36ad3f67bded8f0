"""Stage 7: bus routing of parent-child connections and spouse lines."""

import logging
from dataclasses import dataclass

from stemma.config import LayoutConfig
from stemma.layout_types import (
    ChildDrop,
    ConstrainedModel,
    Connection,
    LayoutModel,
    RoutedModel,
    SpouseLine,
    UnionNode,
)

logger = logging.getLogger(__name__)

SPOUSE_LINE_SPACING = 3
ELBOW_MAX_ITERATIONS = 5


@dataclass
class BusCollision:
    union_id1: str
    union_id2: str
    y: float
    overlap_x: tuple[float, float]


@dataclass
class StaircaseViolation:
    union_id: str
    horizontal_segment_count: int
    description: str


@dataclass
class _Elbow:
    x: float
    y: float
    connection_index: int
    kind: str  # "stem-to-bus" or "bus-to-drop"


@dataclass
class _ClearanceViolation:
    elbow_index: int
    required_shift: float
    direction: int


def generation_y(min_gen: int, max_gen: int, config: LayoutConfig) -> dict[int, float]:
    return {
        gen: config.padding + (gen - min_gen) * config.row_height
        for gen in range(min_gen, max_gen + 1)
    }


def _create_connection(
    union: UnionNode,
    model: LayoutModel,
    union_gen: dict[str, int],
    union_x: dict[str, float],
    person_x: dict[str, float],
    gen_y: dict[int, float],
    config: LayoutConfig,
    secondary_chain: bool,
) -> Connection | None:
    stem_x = union_x.get(union.id)
    parent_gen = union_gen.get(union.id)
    if stem_x is None or parent_gen is None or parent_gen not in gen_y:
        return None
    parent_y = gen_y[parent_gen]
    child_y = gen_y.get(parent_gen + 1)
    if child_y is None:
        return None

    # Two-partner unions hang from the spouse line, everything else from the card bottom
    if union.partner_b is not None and not secondary_chain:
        stem_top_y = parent_y + config.card_height / 2
    else:
        stem_top_y = parent_y + config.card_height

    branch_y = (parent_y + config.card_height + child_y) / 2

    drops = []
    for child_id in union.child_ids:
        child_union_id = model.person_to_union.get(child_id)
        if child_union_id is None or union_gen.get(child_union_id, parent_gen) <= parent_gen:
            continue
        if child_id not in person_x:
            continue
        drops.append(
            ChildDrop(
                person_id=child_id,
                x=person_x[child_id] + config.card_width / 2,
                top_y=branch_y,
                bottom_y=child_y,
            )
        )
    if not drops:
        return None

    branch_left_x = min(d.x for d in drops)
    branch_right_x = max(d.x for d in drops)
    connector_to_x = stem_x
    if stem_x < branch_left_x:
        connector_to_x = branch_left_x
    elif stem_x > branch_right_x:
        connector_to_x = branch_right_x

    return Connection(
        union_id=union.id,
        stem_x=stem_x,
        stem_top_y=stem_top_y,
        stem_bottom_y=branch_y,
        branch_y=branch_y,
        branch_left_x=branch_left_x,
        branch_right_x=branch_right_x,
        connector_from_x=stem_x,
        connector_to_x=connector_to_x,
        connector_y=branch_y,
        drops=drops,
    )


def _create_spouse_line(
    union: UnionNode,
    person_x: dict[str, float],
    union_gen: dict[str, int],
    gen_y: dict[int, float],
    config: LayoutConfig,
) -> SpouseLine | None:
    if union.partner_b is None:
        return None
    xa = person_x.get(union.partner_a)
    xb = person_x.get(union.partner_b)
    gen = union_gen.get(union.id)
    if xa is None or xb is None or gen not in gen_y:
        return None
    return SpouseLine(
        union_id=union.id,
        person1_id=union.partner_a,
        person2_id=union.partner_b,
        partnership_id=union.partnership_id,
        y=gen_y[gen] + config.card_height / 2,
        x_min=min(xa, xb) + config.card_width,
        x_max=max(xa, xb),
    )


def _fan_out_chain_spouse_lines(
    model: LayoutModel,
    spouse_lines: list[SpouseLine],
    person_x: dict[str, float],
    config: LayoutConfig,
) -> None:
    """Offset secondary chain spouse lines so they do not share a Y."""
    by_union = {line.union_id: line for line in spouse_lines}
    for chain in model.partner_chains.values():
        primary_id = model.person_to_union.get(chain.shared_person_id)
        shared_x = person_x.get(chain.shared_person_id)
        if primary_id is None or shared_x is None:
            continue
        shared_center = shared_x + config.card_width / 2

        secondary = []
        for union_id in chain.union_ids:
            union = model.unions.get(union_id)
            if union_id == primary_id or union is None:
                continue
            extra = union.partner_b if union.partner_a == chain.shared_person_id else union.partner_a
            if extra is None or extra not in person_x:
                continue
            distance = abs(person_x[extra] + config.card_width / 2 - shared_center)
            secondary.append((distance, union_id))
        secondary.sort(key=lambda item: item[0])

        for index, (_, union_id) in enumerate(secondary):
            line = by_union.get(union_id)
            if line is not None:
                line.y += (index + 1) * SPOUSE_LINE_SPACING


def resolve_bus_collisions(connections: list[Connection], config: LayoutConfig) -> None:
    """
    Move overlapping buses at the same Y onto separate lanes.

    A bus that would cross a lane-0 bus with its stem, or whose span
    contains a lane-0 drop, stays on lane 0: an offset would turn the
    collinear overlap into a crossing.
    """
    if len(connections) < 2:
        return
    lane_offset = min(8, config.vertical_gap * 0.1)

    groups: dict[int, list[Connection]] = {}
    for conn in connections:
        groups.setdefault(round(conn.branch_y), []).append(conn)

    for group in groups.values():
        if len(group) < 2:
            continue
        group.sort(key=lambda c: c.footprint[0])

        lanes: list[tuple[Connection, int]] = [(group[0], 0)]
        for current in group[1:]:
            left, right = current.footprint
            lane = 0
            collides = True
            while collides:
                collides = False
                for other, other_lane in lanes:
                    if other_lane != lane:
                        continue
                    other_left, other_right = other.footprint
                    if left <= other_right and right >= other_left:
                        collides = True
                        lane += 1
                        break

            if lane > 0:
                for other, other_lane in lanes:
                    if other_lane != 0:
                        continue
                    other_left, other_right = other.footprint
                    if other_left < current.stem_x < other_right or any(
                        left < drop.x < right for drop in other.drops
                    ):
                        lane = 0
                        break

            lanes.append((current, lane))
            if lane > 0:
                current.shift_y(lane * lane_offset)


def detect_bus_collisions(connections: list[Connection]) -> list[BusCollision]:
    """Pairs of connections whose footprints overlap at the same bus Y."""
    collisions = []
    for i, a in enumerate(connections):
        for b in connections[i + 1:]:
            if abs(a.branch_y - b.branch_y) > 1:
                continue
            overlap_left = max(a.footprint[0], b.footprint[0])
            overlap_right = min(a.footprint[1], b.footprint[1])
            if overlap_left < overlap_right:
                collisions.append(
                    BusCollision(a.union_id, b.union_id, a.branch_y, (overlap_left, overlap_right))
                )
    return collisions


# ============================================================================
# Elbow clearance
# ============================================================================


def _elbows(connections: list[Connection]) -> list[_Elbow]:
    elbows = []
    for index, conn in enumerate(connections):
        elbows.append(_Elbow(conn.stem_x, conn.stem_bottom_y, index, "stem-to-bus"))
        for drop in conn.drops:
            elbows.append(_Elbow(drop.x, drop.top_y, index, "bus-to-drop"))
    return elbows


def _within(top: float, bottom: float, y: float) -> bool:
    return min(top, bottom) - 1 <= y <= max(top, bottom) + 1


def _clearance_violations(
    connections: list[Connection], elbows: list[_Elbow], min_clearance: float
) -> list[_ClearanceViolation]:
    violations = []
    for elbow_index, elbow in enumerate(elbows):
        for conn_index, conn in enumerate(connections):
            if conn_index == elbow.connection_index:
                continue

            near = []
            if _within(conn.stem_top_y, conn.stem_bottom_y, elbow.y):
                near.append((conn.stem_x, True))
            for drop in conn.drops:
                if _within(drop.top_y, drop.bottom_y, elbow.y):
                    near.append((drop.x, True))
            if abs(conn.branch_y - elbow.y) < 1:
                near.append((conn.branch_left_x, False))
                near.append((conn.branch_right_x, False))

            for x, vertical in near:
                distance = abs(elbow.x - x)
                if distance >= min_clearance or (not vertical and distance <= 0.5):
                    continue
                violations.append(
                    _ClearanceViolation(
                        elbow_index=elbow_index,
                        required_shift=min_clearance - distance,
                        direction=1 if elbow.x > x else -1,
                    )
                )
    return violations


def resolve_elbow_clearance(connections: list[Connection], config: LayoutConfig) -> None:
    """Nudge drops away from nearby vertical segments; stems never move."""
    min_clearance = config.min_edge_clearance
    for _ in range(ELBOW_MAX_ITERATIONS):
        elbows = _elbows(connections)
        violations = _clearance_violations(connections, elbows, min_clearance)
        if not violations:
            break

        nudged = False
        for violation in violations:
            elbow = elbows[violation.elbow_index]
            if elbow.kind != "bus-to-drop":
                continue
            conn = connections[elbow.connection_index]
            drop = next(
                (
                    d
                    for d in conn.drops
                    if abs(d.x - elbow.x) < 0.5 and abs(d.top_y - elbow.y) < 0.5
                ),
                None,
            )
            if drop is None:
                continue

            drop.x += min(violation.required_shift, min_clearance) * violation.direction
            conn.branch_left_x = min(d.x for d in conn.drops)
            conn.branch_right_x = max(d.x for d in conn.drops)
            if conn.stem_x < conn.branch_left_x:
                conn.connector_to_x = conn.branch_left_x
            elif conn.stem_x > conn.branch_right_x:
                conn.connector_to_x = conn.branch_right_x
            else:
                conn.connector_to_x = conn.stem_x
            nudged = True

        if not nudged:
            break


# ============================================================================
# Staircase detection
# ============================================================================


def detect_staircase_edges(connections: list[Connection]) -> list[StaircaseViolation]:
    """Connections whose connector and bus are not on one horizontal line."""
    violations = []
    for conn in connections:
        levels = {round(conn.branch_y)}
        if abs(conn.connector_from_x - conn.connector_to_x) > 0.5:
            levels.add(round(conn.connector_y))
        if len(levels) > 1:
            violations.append(
                StaircaseViolation(
                    union_id=conn.union_id,
                    horizontal_segment_count=len(levels),
                    description=(
                        f"Connection from union {conn.union_id} has {len(levels)} horizontal "
                        f"segments at different Y levels. connector_y={conn.connector_y:.1f}, "
                        f"branch_y={conn.branch_y:.1f}"
                    ),
                )
            )
    return violations


def validate_no_staircase_edges(connections: list[Connection]) -> bool:
    return not detect_staircase_edges(connections)


def route_edges(constrained: ConstrainedModel, config: LayoutConfig) -> RoutedModel:
    """
    Build connections and spouse lines from the constrained positions.

    Args:
        constrained: Output of apply_constraints
        config: Layout configuration

    Returns:
        The routed model. Every connection's bus runs exactly halfway between
        the parent card bottom and the child card top unless it was moved to
        another lane.
    """
    placed = constrained.placed
    gen_model = placed.measured.gen_model
    model = gen_model.model
    gen_y = generation_y(gen_model.min_gen, gen_model.max_gen, config)
    secondary = model.secondary_chain_unions()

    connections = []
    for union in model.unions.values():
        if not union.child_ids:
            continue
        conn = _create_connection(
            union,
            model,
            gen_model.union_gen,
            placed.union_x,
            placed.person_x,
            gen_y,
            config,
            union.id in secondary,
        )
        if conn is not None:
            connections.append(conn)

    spouse_lines = []
    for union in model.unions.values():
        line = _create_spouse_line(union, placed.person_x, gen_model.union_gen, gen_y, config)
        if line is not None:
            spouse_lines.append(line)

    _fan_out_chain_spouse_lines(model, spouse_lines, placed.person_x, config)
    resolve_bus_collisions(connections, config)
    resolve_elbow_clearance(connections, config)

    logger.debug("Routed %d connections, %d spouse lines", len(connections), len(spouse_lines))
    return RoutedModel(constrained=constrained, connections=connections, spouse_lines=spouse_lines)
