"""Per-stage snapshots plus overlay geometry and checks for debugging layouts."""

from dataclasses import dataclass, field

from stemma.config import LayoutConfig
from stemma.layout_types import (
    ConstrainedModel,
    GenerationalModel,
    GraphSelection,
    LayoutModel,
    LayoutResult,
    MeasuredModel,
    PlacedModel,
    RoutedModel,
)
from stemma.routing import generation_y

DEBUG_STEP_NAMES = {
    1: "Select Subgraph",
    2: "Build Model",
    3: "Assign Generations",
    4: "Measure Subtrees",
    5: "Place X",
    6: "Apply Constraints",
    7: "Route Edges",
    8: "Emit Result",
}

GOLDEN_ANGLE = 137.508


# ============================================================================
# Snapshot records
# ============================================================================


@dataclass
class CenteringError:
    union_id: str
    parent_center_x: float
    children_center_x: float
    error_px: float


@dataclass
class DebugValidationResult:
    box_overlap_count: int = 0
    span_overlap_count: int = 0
    centering_errors: list[CenteringError] = field(default_factory=list)
    edge_crossing_count: int = 0
    all_passed: bool = True


@dataclass
class DebugRect:
    id: str
    x: float
    y: float
    width: float
    height: float
    label: str | None = None


@dataclass
class DebugSiblingSpan:
    union_id: str
    x1: float
    x2: float
    y: float


@dataclass
class DebugBusLine:
    union_id: str
    y: float
    x1: float
    x2: float


@dataclass
class DebugAnchorPoint:
    id: str
    x: float
    y: float
    kind: str  # "person", "union" or "bus"


@dataclass
class DebugGenerationBand:
    gen: int
    y: float
    height: float


@dataclass
class DebugBranchEnvelope:
    branch_id: str
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    label: str
    sibling_index: int
    color: str


@dataclass
class DebugSiblingFamilyCluster:
    person_id: str
    label: str
    card_min_x: float
    card_max_x: float
    block_min_x: float
    block_max_x: float
    min_y: float
    max_y: float
    color: str


@dataclass
class DebugGeometry:
    person_boxes: list[DebugRect] = field(default_factory=list)
    union_boxes: list[DebugRect] = field(default_factory=list)
    sibling_spans: list[DebugSiblingSpan] = field(default_factory=list)
    bus_lines: list[DebugBusLine] = field(default_factory=list)
    anchor_points: list[DebugAnchorPoint] = field(default_factory=list)
    generation_bands: list[DebugGenerationBand] = field(default_factory=list)
    branch_envelopes: list[DebugBranchEnvelope] = field(default_factory=list)
    sibling_family_clusters: list[DebugSiblingFamilyCluster] = field(default_factory=list)


@dataclass
class DebugSnapshot:
    step: int
    step_name: str
    selection: GraphSelection | None = None
    model: LayoutModel | None = None
    gen_model: GenerationalModel | None = None
    measured: MeasuredModel | None = None
    placed: PlacedModel | None = None
    constrained: ConstrainedModel | None = None
    routed: RoutedModel | None = None
    result: LayoutResult | None = None
    validation: DebugValidationResult | None = None
    geometry: DebugGeometry | None = None


@dataclass
class DebugPipelineResult:
    result: LayoutResult
    snapshots: list[DebugSnapshot]


def make_snapshot(step: int, config: LayoutConfig, **state) -> DebugSnapshot:
    """Record pipeline state; geometry and checks are added from step 5 on."""
    snapshot = DebugSnapshot(step=step, step_name=DEBUG_STEP_NAMES[step], **state)
    if step >= 5 and snapshot.placed is not None:
        snapshot.validation = compute_debug_validation(snapshot, config)
        snapshot.geometry = compute_debug_geometry(snapshot, config)
    return snapshot


# ============================================================================
# Validation counters
# ============================================================================


def _box_overlaps(snapshot: DebugSnapshot, config: LayoutConfig) -> int:
    person_x = snapshot.placed.person_x
    measured = snapshot.placed.measured
    person_to_union = snapshot.gen_model.model.person_to_union

    def block_of(person_id: str) -> str | None:
        return measured.union_to_block.get(person_to_union.get(person_id, ""))

    count = 0
    for band in snapshot.gen_model.gen_bands.values():
        ordered = sorted(band.persons, key=lambda p: (person_x.get(p, 0.0), p))
        for current, following in zip(ordered, ordered[1:]):
            # Cards of one block only need the partner gap
            same_block = block_of(current) is not None and block_of(current) == block_of(following)
            gap = config.partner_gap if same_block else config.horizontal_gap
            if person_x.get(current, 0.0) + config.card_width + gap > person_x.get(following, 0.0) + 0.01:
                count += 1
    return count


def _sibling_spans(
    gen_model: GenerationalModel, person_x: dict[str, float], config: LayoutConfig
) -> dict[str, tuple[int, float, float]]:
    spans = {}
    for union_id, union in gen_model.model.unions.items():
        gen = gen_model.union_gen.get(union_id)
        xs = [person_x[c] for c in union.child_ids if c in person_x]
        if gen is None or not xs:
            continue
        spans[union_id] = (gen + 1, min(xs), max(xs) + config.card_width)
    return spans


def _span_overlaps(snapshot: DebugSnapshot, config: LayoutConfig) -> int:
    by_gen: dict[int, list[tuple[float, float]]] = {}
    for gen, x1, x2 in _sibling_spans(snapshot.gen_model, snapshot.placed.person_x, config).values():
        by_gen.setdefault(gen, []).append((x1, x2))

    count = 0
    for spans in by_gen.values():
        spans.sort()
        for (_, right), (left, _) in zip(spans, spans[1:]):
            if right + config.horizontal_gap > left:
                count += 1
    return count


def _centering_errors(snapshot: DebugSnapshot, config: LayoutConfig) -> list[CenteringError]:
    union_x = snapshot.placed.union_x
    errors = []
    for union_id, (_, x1, x2) in _sibling_spans(
        snapshot.gen_model, snapshot.placed.person_x, config
    ).items():
        parent_center = union_x.get(union_id)
        if parent_center is None:
            continue
        children_center = (x1 + x2) / 2
        error = abs(parent_center - children_center)
        if error > 1.0:
            errors.append(CenteringError(union_id, parent_center, children_center, error))
    errors.sort(key=lambda e: -e.error_px)
    return errors


def _points_equal(x1: float, y1: float, x2: float, y2: float) -> bool:
    return abs(x1 - x2) < 0.01 and abs(y1 - y2) < 0.01


def _direction(x1, y1, x2, y2, x3, y3) -> float:
    return (x3 - x1) * (y2 - y1) - (y3 - y1) * (x2 - x1)


def _on_segment(x1, y1, x2, y2, px, py) -> bool:
    return min(x1, x2) <= px <= max(x1, x2) and min(y1, y2) <= py <= max(y1, y2)


def segments_intersect(s1: tuple, s2: tuple) -> bool:
    """Proper or collinear intersection of two segments; shared endpoints do not count."""
    ax1, ay1, ax2, ay2 = s1
    bx1, by1, bx2, by2 = s2
    for px, py in ((ax1, ay1), (ax2, ay2)):
        for qx, qy in ((bx1, by1), (bx2, by2)):
            if _points_equal(px, py, qx, qy):
                return False

    d1 = _direction(bx1, by1, bx2, by2, ax1, ay1)
    d2 = _direction(bx1, by1, bx2, by2, ax2, ay2)
    d3 = _direction(ax1, ay1, ax2, ay2, bx1, by1)
    d4 = _direction(ax1, ay1, ax2, ay2, bx2, by2)
    if ((d1 > 0 > d2) or (d1 < 0 < d2)) and ((d3 > 0 > d4) or (d3 < 0 < d4)):
        return True

    if d1 == 0 and _on_segment(bx1, by1, bx2, by2, ax1, ay1):
        return True
    if d2 == 0 and _on_segment(bx1, by1, bx2, by2, ax2, ay2):
        return True
    if d3 == 0 and _on_segment(ax1, ay1, ax2, ay2, bx1, by1):
        return True
    if d4 == 0 and _on_segment(ax1, ay1, ax2, ay2, bx2, by2):
        return True
    return False


def _edge_crossings(snapshot: DebugSnapshot) -> int:
    if snapshot.routed is None or len(snapshot.routed.connections) < 2:
        return 0
    segments = []
    for index, conn in enumerate(snapshot.routed.connections):
        segments.append((index, (conn.stem_x, conn.stem_top_y, conn.stem_x, conn.branch_y)))
        segments.append(
            (index, (conn.branch_left_x, conn.branch_y, conn.branch_right_x, conn.branch_y))
        )
        for drop in conn.drops:
            segments.append((index, (drop.x, conn.branch_y, drop.x, drop.bottom_y)))

    # Segments of one connection meet by construction
    count = 0
    for i, (owner, first) in enumerate(segments):
        for other, second in segments[i + 1:]:
            if owner != other and segments_intersect(first, second):
                count += 1
    return count


def compute_debug_validation(snapshot: DebugSnapshot, config: LayoutConfig) -> DebugValidationResult:
    """
    Count invariant violations in a snapshot.

    Nothing is checked before step 5. Edge crossings are only counted once
    edges are routed (step 7 on).
    """
    if snapshot.step < 5 or snapshot.placed is None or snapshot.gen_model is None:
        return DebugValidationResult()

    box = _box_overlaps(snapshot, config)
    span = _span_overlaps(snapshot, config)
    centering = _centering_errors(snapshot, config)
    crossings = _edge_crossings(snapshot) if snapshot.step >= 7 else 0
    return DebugValidationResult(
        box_overlap_count=box,
        span_overlap_count=span,
        centering_errors=centering,
        edge_crossing_count=crossings,
        all_passed=box == 0 and span == 0 and not centering and crossings == 0,
    )


# ============================================================================
# Overlay geometry
# ============================================================================


def _hsla(index: int, alpha: float) -> str:
    return f"hsla({(index * GOLDEN_ANGLE) % 360}, 70%, 50%, {alpha})"


def compute_debug_geometry(snapshot: DebugSnapshot, config: LayoutConfig) -> DebugGeometry:
    """
    Compute overlay primitives for a snapshot, normalized like the final result.

    Args:
        snapshot: A snapshot from step 5 or later
        config: Layout configuration

    Returns:
        Boxes, spans, bus lines, anchors, bands, branch envelopes and the
        sibling family clusters around the focus's parents
    """
    if snapshot.step < 5 or snapshot.placed is None or snapshot.gen_model is None:
        return DebugGeometry()

    gen_model = snapshot.gen_model
    model = gen_model.model
    placed = snapshot.placed
    shift = config.padding - min(placed.person_x.values()) if placed.person_x else 0.0
    person_x = {pid: x + shift for pid, x in placed.person_x.items()}
    union_x = {uid: x + shift for uid, x in placed.union_x.items()}
    gen_y = generation_y(gen_model.min_gen, gen_model.max_gen, config)
    geometry = DebugGeometry()

    for person_id, x in person_x.items():
        y = gen_y.get(gen_model.person_gen.get(person_id))
        if y is None:
            continue
        person = model.persons.get(person_id)
        geometry.person_boxes.append(
            DebugRect(
                id=person_id,
                x=x,
                y=y,
                width=config.card_width,
                height=config.card_height,
                label=person.name if person else person_id,
            )
        )
        geometry.anchor_points.append(
            DebugAnchorPoint(
                f"p_{person_id}", x + config.card_width / 2, y + config.card_height / 2, "person"
            )
        )

    for union_id, union in model.unions.items():
        y = gen_y.get(gen_model.union_gen.get(union_id))
        xa = person_x.get(union.partner_a)
        if y is None or xa is None:
            continue
        box_x, box_width = xa, config.card_width
        xb = person_x.get(union.partner_b) if union.partner_b else None
        if xb is not None:
            box_x = min(xa, xb)
            box_width = max(xa, xb) + config.card_width - box_x
        geometry.union_boxes.append(
            DebugRect(id=union_id, x=box_x - 2, y=y - 2, width=box_width + 4, height=config.card_height + 4)
        )

    for union_id, (gen, x1, x2) in _sibling_spans(gen_model, person_x, config).items():
        if gen in gen_y:
            geometry.sibling_spans.append(
                DebugSiblingSpan(union_id, x1, x2, gen_y[gen] + config.card_height + 5)
            )

    for union_id, x in union_x.items():
        y = gen_y.get(gen_model.union_gen.get(union_id))
        if y is not None:
            geometry.anchor_points.append(
                DebugAnchorPoint(f"u_{union_id}", x, y + config.card_height, "union")
            )

    if snapshot.routed is not None:
        for conn in snapshot.routed.connections:
            geometry.bus_lines.append(
                DebugBusLine(conn.union_id, conn.branch_y, conn.branch_left_x, conn.branch_right_x)
            )
            geometry.anchor_points.append(
                DebugAnchorPoint(f"bus_{conn.union_id}", conn.stem_x, conn.branch_y, "bus")
            )

    for gen, y in gen_y.items():
        geometry.generation_bands.append(DebugGenerationBand(gen, y - 10, config.card_height + 20))

    measured = snapshot.measured
    if measured is not None:
        geometry.branch_envelopes = _branch_envelopes(snapshot, gen_y, shift, config)
    if snapshot.constrained is not None and measured is not None:
        geometry.sibling_family_clusters = _sibling_family_clusters(
            snapshot, person_x, gen_y, shift, config
        )
    return geometry


def _branch_envelopes(
    snapshot: DebugSnapshot, gen_y: dict[int, float], shift: float, config: LayoutConfig
) -> list[DebugBranchEnvelope]:
    measured = snapshot.placed.measured
    model = measured.gen_model.model
    envelopes = []
    for branch in measured.branches.values():
        ys = [
            gen_y[measured.blocks[b].generation]
            for b in branch.block_ids
            if b in measured.blocks and measured.blocks[b].generation in gen_y
        ]
        if not ys:
            continue
        person = model.persons.get(branch.child_person_id)
        label = (
            f"{person.name} [{branch.sibling_index}]"
            if person
            else f"Branch {branch.sibling_index}"
        )
        envelopes.append(
            DebugBranchEnvelope(
                branch_id=branch.id,
                min_x=branch.min_x + shift,
                max_x=branch.max_x + shift,
                min_y=min(ys) - 5,
                max_y=max(ys) + config.card_height + 5,
                label=label,
                sibling_index=branch.sibling_index,
                color=_hsla(branch.sibling_index, 0.15),
            )
        )
    return envelopes


def _sibling_family_clusters(
    snapshot: DebugSnapshot,
    person_x: dict[str, float],
    gen_y: dict[int, float],
    shift: float,
    config: LayoutConfig,
) -> list[DebugSiblingFamilyCluster]:
    """Clusters of the generation -1 sibling families on both parental sides."""
    measured = snapshot.placed.measured
    model = measured.gen_model.model
    focus_id = snapshot.selection.focus_person_id if snapshot.selection else None
    parent_union = model.unions.get(model.child_to_parent_union.get(focus_id, ""))
    if parent_union is None:
        return []

    clusters = []
    seen: set[str] = set()
    for parent_id in parent_union.partners:
        grandparents = model.unions.get(model.child_to_parent_union.get(parent_id, ""))
        if grandparents is None:
            continue
        for sibling_id in grandparents.child_ids:
            block_id = measured.union_to_block.get(model.person_to_union.get(sibling_id, ""))
            if block_id is None or block_id in seen:
                continue
            seen.add(block_id)
            block = measured.blocks[block_id]
            if block.generation != -1:
                continue

            card_xs: list[float] = []
            block_min, block_max = float("inf"), float("-inf")
            ys: list[float] = []
            stack = [block_id]
            visited: set[str] = set()
            while stack:
                current = measured.blocks[stack.pop()]
                if current.id in visited:
                    continue
                visited.add(current.id)
                block_min = min(block_min, current.x_left + shift)
                block_max = max(block_max, current.x_right + shift)
                union = model.unions[current.root_union_id]
                for pid in union.partners + union.child_ids:
                    if pid in person_x:
                        card_xs.append(person_x[pid])
                if current.generation in gen_y:
                    ys.append(gen_y[current.generation])
                stack.extend(current.child_block_ids)

            union = model.unions[block.root_union_id]
            names = [model.persons[p].first_name for p in union.partners if p in model.persons]
            clusters.append(
                DebugSiblingFamilyCluster(
                    person_id=sibling_id,
                    label=" & ".join(names) or "?",
                    card_min_x=min(card_xs) if card_xs else 0.0,
                    card_max_x=max(card_xs) + config.card_width if card_xs else 0.0,
                    block_min_x=block_min,
                    block_max_x=block_max,
                    min_y=min(ys) if ys else 0.0,
                    max_y=max(ys) + config.card_height if ys else 0.0,
                    color=_hsla(len(clusters), 0.2),
                )
            )
    return clusters
