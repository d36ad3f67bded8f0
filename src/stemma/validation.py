"""Validation of layout results and of raw family data."""

import math

from stemma.config import LayoutConfig
from stemma.graph import build_family_graph, find_descent_cycle
from stemma.layout_types import LayoutResult, Position, ValidationResult
from stemma.models import FamilyData


def _rectangles_overlap(a: Position, b: Position, width: float, height: float, gap: float) -> bool:
    w = width + gap
    h = height + gap
    if a.x + w <= b.x or b.x + w <= a.x:
        return False
    if a.y + h <= b.y or b.y + h <= a.y:
        return False
    return True


def _card_overlaps(result: LayoutResult, config: LayoutConfig) -> list[str]:
    errors = []
    items = list(result.positions.items())
    min_gap = config.horizontal_gap / 2
    for i, (id1, pos1) in enumerate(items):
        for id2, pos2 in items[i + 1:]:
            if _rectangles_overlap(pos1, pos2, config.card_width, config.card_height, min_gap):
                errors.append(f"Card overlap: {id1} and {id2}")
    return errors


def _references(result: LayoutResult) -> list[str]:
    errors = []
    for conn in result.connections:
        for drop in conn.drops:
            if drop.person_id not in result.positions:
                errors.append(f"Connection drop references missing person: {drop.person_id}")
    for line in result.spouse_lines:
        for person_id in (line.person1_id, line.person2_id):
            if person_id not in result.positions:
                errors.append(f"Spouse line references missing person: {person_id}")
    return errors


def _bounds(result: LayoutResult) -> list[str]:
    errors = []
    for person_id, pos in result.positions.items():
        if not (math.isfinite(pos.x) and math.isfinite(pos.y)):
            errors.append(f"Invalid position for {person_id}: ({pos.x}, {pos.y})")
            continue
        if pos.x < 0:
            errors.append(f"Negative X position for {person_id}: {pos.x}")
        if pos.y < 0:
            errors.append(f"Negative Y position for {person_id}: {pos.y}")
    return errors


def _bus_overlaps(result: LayoutResult) -> list[str]:
    errors = []
    for i, a in enumerate(result.connections):
        for b in result.connections[i + 1:]:
            if abs(a.branch_y - b.branch_y) >= 1:
                continue
            if a.branch_left_x < b.branch_right_x and b.branch_left_x < a.branch_right_x:
                errors.append(f"Bus line overlap at Y={a.branch_y:.0f}: {a.union_id} and {b.union_id}")
    return errors


def validate_layout(result: LayoutResult, config: LayoutConfig) -> ValidationResult:
    """
    Check the final layout for:
    - Overlapping cards (with half a horizontal gap of slack)
    - Connections or spouse lines referring to persons without a position
    - Negative or non-finite coordinates
    - Buses overlapping at the same Y
    """
    errors = _card_overlaps(result, config)
    errors += _references(result)
    errors += _bounds(result)
    errors += _bus_overlaps(result)
    return ValidationResult(passed=not errors, errors=errors)


def check_centering_constraint(
    result: LayoutResult, parent_id: str, child_ids: list[str], tolerance: float = 1
) -> str | None:
    """Return a message if the parent card is not centered over its children's cards."""
    parent = result.positions.get(parent_id)
    if parent is None:
        return None
    xs = [result.positions[c].x for c in child_ids if c in result.positions]
    if not xs:
        return None

    violation = abs(parent.x - (min(xs) + max(xs)) / 2)
    if violation > tolerance:
        return f"Centering violation for {parent_id}: {violation:.1f}px off center"
    return None


def validate_family_data(data: FamilyData) -> list[str]:
    """
    Validate raw family data for:
    - Cycles in parent-child relationships
    - Impossible ages (child born before parent)
    - Death before birth

    Returns a list of warning messages.
    """
    G = build_family_graph(data)
    warnings: list[str] = []

    cycle = find_descent_cycle(G, "relationship_type", ("PARENT_OF",))
    if cycle is not None:
        warnings.append(f"Cycle detected in parent-child relationships: {cycle}")

    # ISO dates compare correctly as strings
    for parent, child, edge in G.edges(data=True):
        if edge.get("relationship_type") != "PARENT_OF":
            continue
        parent_data = G.nodes[parent]
        child_data = G.nodes[child]
        parent_birth = parent_data.get("birth_date")
        child_birth = child_data.get("birth_date")
        if not (parent_birth and child_birth):
            continue

        if child_birth < parent_birth:
            warnings.append(
                f"Impossible: {child_data.get('person_name')} born before parent "
                f"{parent_data.get('person_name')}"
            )
            continue
        try:
            parent_year = int(parent_birth[:4])
            child_year = int(child_birth[:4])
        except ValueError:
            continue
        if child_year - parent_year < 12:
            warnings.append(
                f"Suspicious: {parent_data.get('person_name')} was less than 12 years "
                f"old when {child_data.get('person_name')} was born"
            )

    for _, node in G.nodes(data=True):
        birth = node.get("birth_date")
        death = node.get("death_date")
        if birth and death and death < birth:
            warnings.append(f"Impossible: {node.get('person_name')} died before being born")

    return warnings
