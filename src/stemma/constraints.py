"""Stage 6: constraint solving in two phases.

Phase A settles generation -1 and every deeper one (the focus's parents, aunts and
uncles, and every descendant) and freezes them. Phase B then places the
older ancestors without ever touching a frozen position.
"""

import copy
import dataclasses
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from stemma.config import DEFAULT_MAX_ITERATIONS, DEFAULT_TOLERANCE, LayoutConfig
from stemma.errors import LockedPositionError
from stemma.layout_types import (
    ConstrainedModel,
    FamilyBlock,
    MeasuredModel,
    PlacedModel,
)
from stemma.placement import card_bounds, compute_branch_bounds, extract_positions, shift_block

logger = logging.getLogger(__name__)

LOCKED_MIN_GEN = -1


@dataclass(frozen=True)
class PhaseAResult:
    measured: MeasuredModel
    config: LayoutConfig
    iterations: int
    max_violation: float
    locked_person_x: Mapping[str, float]
    focus_person_id: str | None = None


@dataclass
class AncestorNode:
    block_id: str
    couple_width: float
    husband: "AncestorNode | None" = None
    wife: "AncestorNode | None" = None
    width: float = 0.0
    x_center: float = 0.0


# ============================================================================
# Block geometry helpers
# ============================================================================


def subtree_blocks(block_id: str, blocks: dict[str, FamilyBlock]) -> list[FamilyBlock]:
    result: list[FamilyBlock] = []
    stack = [block_id]
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current in seen or current not in blocks:
            continue
        seen.add(current)
        block = blocks[current]
        result.append(block)
        stack.extend(c for c in block.child_block_ids if blocks[c].generation > block.generation)
    return result


def subtree_card_extent(block_id: str, blocks: dict[str, FamilyBlock]) -> tuple[float, float]:
    return card_bounds(subtree_blocks(block_id, blocks))


def shift_subtree(block_id: str, dx: float, blocks: dict[str, FamilyBlock]) -> None:
    for block in subtree_blocks(block_id, blocks):
        shift_block(block, dx)


def recompute_extents(blocks: dict[str, FamilyBlock]) -> None:
    """Reset x_left/x_right to the card extent of each block's subtree."""
    for block in sorted(blocks.values(), key=lambda b: -b.generation):
        children = [
            blocks[c] for c in block.child_block_ids if blocks[c].generation > block.generation
        ]
        block.x_left = min([block.card_left] + [c.x_left for c in children])
        block.x_right = max([block.card_right] + [c.x_right for c in children])
        if children:
            block.children_center_x = (children[0].x_center + children[-1].x_center) / 2
        else:
            block.children_center_x = block.x_center


def _child_blocks(block: FamilyBlock, blocks: dict[str, FamilyBlock]) -> list[FamilyBlock]:
    return [
        blocks[c]
        for c in block.child_block_ids
        if blocks[c].generation > block.generation and blocks[c].parent_block_id == block.id
    ]


def _focus_parents_block_id(measured: MeasuredModel, focus_person_id: str | None) -> str | None:
    model = measured.gen_model.model
    if focus_person_id is not None:
        parent_union_id = model.child_to_parent_union.get(focus_person_id)
        if parent_union_id is not None:
            block_id = measured.union_to_block.get(parent_union_id)
            if block_id is not None and measured.blocks[block_id].generation == LOCKED_MIN_GEN:
                return block_id
    if measured.focus_block_id is None:
        return None
    parent_id = measured.blocks[measured.focus_block_id].parent_block_id
    if parent_id is not None and measured.blocks[parent_id].generation == LOCKED_MIN_GEN:
        return parent_id
    return None


# ============================================================================
# Phase A: generations >= -1
# ============================================================================


def _phase_a_pass(
    blocks: dict[str, FamilyBlock], config: LayoutConfig, anchor_id: str | None
) -> float:
    gap = config.horizontal_gap
    moved = 0.0
    active = [b for b in blocks.values() if b.generation >= LOCKED_MIN_GEN]
    if not active:
        return moved

    by_gen: dict[int, list[FamilyBlock]] = {}
    for block in active:
        by_gen.setdefault(block.generation, []).append(block)

    # Bottom-up: separate sibling families, then center each parent over them
    for gen in sorted(by_gen, reverse=True):
        for block in sorted(by_gen[gen], key=lambda b: b.id):
            children = _child_blocks(block, blocks)
            if not children:
                continue
            prev_right = None
            for child in children:
                left, right = subtree_card_extent(child.id, blocks)
                if prev_right is not None:
                    dx = prev_right + gap - left
                    if dx != 0.0:
                        shift_subtree(child.id, dx, blocks)
                        moved = max(moved, abs(dx))
                    right += dx
                prev_right = right

            left, right = card_bounds(children)
            dx = (left + right) / 2 - block.x_center
            if dx != 0.0:
                shift_block(block, dx)
                moved = max(moved, abs(dx))

    # Pack the root families outward from the one holding the focus
    roots = [
        b
        for b in active
        if b.parent_block_id is None or blocks[b.parent_block_id].generation < LOCKED_MIN_GEN
    ]
    if not roots:
        return moved
    roots.sort(key=lambda b: (b.x_center, b.id))
    anchor = next((r for r in roots if r.id == anchor_id), roots[0])
    anchor_left, anchor_right = subtree_card_extent(anchor.id, blocks)

    left_roots = [r for r in roots if r is not anchor and r.x_center < anchor.x_center]
    right_roots = [r for r in roots if r is not anchor and r.x_center >= anchor.x_center]

    edge = anchor_left
    for root in reversed(left_roots):
        left, right = subtree_card_extent(root.id, blocks)
        dx = edge - gap - right
        if dx != 0.0:
            shift_subtree(root.id, dx, blocks)
            moved = max(moved, abs(dx))
        edge = left + dx

    edge = anchor_right
    for root in right_roots:
        left, right = subtree_card_extent(root.id, blocks)
        dx = edge + gap - left
        if dx != 0.0:
            shift_subtree(root.id, dx, blocks)
            moved = max(moved, abs(dx))
        edge = right + dx

    return moved


def _root_of(block_id: str, blocks: dict[str, FamilyBlock]) -> str:
    current = blocks[block_id]
    while (
        current.parent_block_id is not None
        and LOCKED_MIN_GEN <= blocks[current.parent_block_id].generation < current.generation
    ):
        current = blocks[current.parent_block_id]
    return current.id


def solve_phase_a(
    placed: PlacedModel,
    config: LayoutConfig,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = DEFAULT_TOLERANCE,
    focus_person_id: str | None = None,
) -> PhaseAResult:
    """
    Settle every block of generation -1 or deeper.

    Each pass walks the generations bottom-up: the child families of a
    block are packed left to right in birth order by the card extent of
    their whole subtree (so sibling families never interleave) and the block
    is recentered over its children's cards. The root families are then
    packed outward from the one containing the focus. Passes repeat until
    the largest move is within `tolerance`.

    Args:
        placed: Output of place_x (not modified)
        config: Layout configuration
        max_iterations: Upper bound on passes
        tolerance: Convergence threshold in pixels
        focus_person_id: Focus person, used to find the anchor family

    Returns:
        A PhaseAResult with a read-only snapshot of the locked positions
    """
    measured = dataclasses.replace(
        placed.measured,
        blocks=copy.deepcopy(placed.measured.blocks),
        branches=copy.deepcopy(placed.measured.branches),
    )
    blocks = measured.blocks

    anchor_id = _focus_parents_block_id(measured, focus_person_id)
    if anchor_id is None and measured.focus_block_id is not None:
        anchor_id = _root_of(measured.focus_block_id, blocks)

    iterations = 0
    max_move = 0.0
    while iterations < max_iterations:
        iterations += 1
        max_move = _phase_a_pass(blocks, config, anchor_id)
        if max_move <= tolerance:
            break

    recompute_extents(blocks)
    person_x, _ = extract_positions(measured, config)
    locked = {
        pid: person_x[pid]
        for block in blocks.values()
        if block.generation >= LOCKED_MIN_GEN
        for pid in block.person_order
    }
    logger.debug(
        "Phase A: %d iterations, last move %.2f, %d locked persons",
        iterations,
        max_move,
        len(locked),
    )
    return PhaseAResult(
        measured=measured,
        config=config,
        iterations=iterations,
        max_violation=max_move,
        locked_person_x=MappingProxyType(locked),
        focus_person_id=focus_person_id,
    )


# ============================================================================
# Phase B: generations <= -2
# ============================================================================


class _AncestorPlacer:
    def __init__(self, measured: MeasuredModel, config: LayoutConfig):
        self.measured = measured
        self.model = measured.gen_model.model
        self.blocks = measured.blocks
        self.config = config
        self.visited: set[str] = set()
        self.centers: dict[str, float] = {}

    def build(self, person_id: str | None, child: FamilyBlock) -> AncestorNode | None:
        if person_id is None or person_id not in child.person_order:
            return None
        parent_union_id = self.model.child_to_parent_union.get(person_id)
        block_id = self.measured.union_to_block.get(parent_union_id) if parent_union_id else None
        if block_id is None or block_id in self.visited:
            return None
        block = self.blocks[block_id]
        if block.generation >= LOCKED_MIN_GEN or block.generation >= child.generation:
            return None
        self.visited.add(block_id)

        node = AncestorNode(block_id=block_id, couple_width=block.couple_width)
        node.husband = self.build(block.husband_id, block)
        node.wife = self.build(block.wife_id, block)
        parts = [n.width for n in (node.husband, node.wife) if n is not None]
        inner = sum(parts) + (len(parts) - 1) * self.config.horizontal_gap if parts else 0.0
        node.width = max(node.couple_width, inner)
        return node

    def place(self, node: AncestorNode, left: float, right: float) -> None:
        gap = self.config.horizontal_gap
        h, w = node.husband, node.wife
        if h is not None and w is not None:
            offset = (right - left - (h.width + w.width + gap)) / 2
            self.place(h, left + offset, left + offset + h.width)
            self.place(w, right - offset - w.width, right - offset)
            center = left + offset + h.width + gap / 2
        elif h is not None or w is not None:
            sub = h if h is not None else w
            offset = (right - left - sub.width) / 2
            self.place(sub, left + offset, left + offset + sub.width)
            center = sub.x_center
        else:
            center = (left + right) / 2

        half = node.couple_width / 2
        if right - left >= node.couple_width:
            center = min(max(center, left + half), right - half)
        node.x_center = center
        self.centers[node.block_id] = center

    def place_trees(self, anchor: FamilyBlock) -> None:
        card = self.config.card_width
        husband_tree = self.build(anchor.husband_id, anchor)
        wife_tree = self.build(anchor.wife_id, anchor)

        if husband_tree is not None and wife_tree is not None:
            husband_right = anchor.person_left(anchor.husband_id, self.config) + card
            wife_left = anchor.person_left(anchor.wife_id, self.config)
            self.place(husband_tree, husband_right - husband_tree.width, husband_right)
            self.place(wife_tree, wife_left, wife_left + wife_tree.width)
        elif husband_tree is not None:
            center = anchor.person_center(anchor.husband_id, self.config)
            self.place(husband_tree, center - husband_tree.width / 2, center + husband_tree.width / 2)
        elif wife_tree is not None:
            center = anchor.person_center(anchor.wife_id, self.config)
            self.place(wife_tree, center - wife_tree.width / 2, center + wife_tree.width / 2)

        for block_id, center in self.centers.items():
            self.blocks[block_id].set_center(center, self.config)

    def sweep(self, axis: float) -> None:
        """Push overlapping ancestor blocks away from the axis, one generation at a time."""
        gap = self.config.horizontal_gap
        cross_gap = min(self.config.horizontal_gap, self.config.partner_gap)
        generations = sorted(
            {b.generation for b in self.blocks.values() if b.generation < LOCKED_MIN_GEN}
        )
        for gen in generations:
            row = [b for b in self.blocks.values() if b.generation == gen]
            left_group = sorted(
                (b for b in row if b.x_center < axis), key=lambda b: (-b.x_center, b.id)
            )
            right_group = sorted(
                (b for b in row if b.x_center >= axis), key=lambda b: (b.x_center, b.id)
            )

            for inner, outer in zip(left_group, left_group[1:]):
                overlap = outer.card_right + gap - inner.card_left
                if overlap > 0.5:
                    outer.set_center(outer.x_center - overlap, self.config)

            previous = left_group[0] if left_group else None
            required = cross_gap
            for block in right_group:
                if previous is not None:
                    overlap = previous.card_right + required - block.card_left
                    if overlap > 0.5:
                        block.set_center(block.x_center + overlap, self.config)
                previous = block
                required = gap


def solve_phase_b(phase_a: PhaseAResult) -> dict[str, float]:
    """
    Place the ancestors of generation -2 and older.

    The paternal and maternal ancestor trees are laid out independently: the
    paternal tree ends at the father's right card edge, the maternal tree
    starts at the mother's left card edge. When only one tree exists it is
    centered above its parent. An outward sweep then removes any remaining
    overlap per generation.

    Returns:
        The new center of every block of generation -2 or older, keyed by
        block ID. Locked blocks are never part of the result.
    """
    measured = dataclasses.replace(
        phase_a.measured, blocks=copy.deepcopy(phase_a.measured.blocks)
    )
    placer = _AncestorPlacer(measured, phase_a.config)

    anchor_id = _focus_parents_block_id(measured, phase_a.focus_person_id)
    if anchor_id is not None:
        anchor = measured.blocks[anchor_id]
        placer.place_trees(anchor)
        placer.sweep(anchor.couple_center_x)
    elif measured.focus_block_id is not None:
        placer.sweep(measured.blocks[measured.focus_block_id].x_center)

    logger.debug("Phase B: %d ancestor blocks placed from trees", len(placer.centers))
    return {
        block_id: block.x_center
        for block_id, block in measured.blocks.items()
        if block.generation < LOCKED_MIN_GEN
    }


def assert_locked_unchanged(
    locked_person_x: Mapping[str, float],
    person_x: dict[str, float],
    tolerance: float = DEFAULT_TOLERANCE,
) -> None:
    """Raise LockedPositionError if any locked person moved by more than `tolerance`."""
    moved = [
        pid
        for pid, x in locked_person_x.items()
        if pid in person_x and abs(person_x[pid] - x) > tolerance
    ]
    if moved:
        raise LockedPositionError(sorted(moved))


def apply_constraints(
    placed: PlacedModel,
    config: LayoutConfig,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = DEFAULT_TOLERANCE,
    stop_after_phase: str | None = None,
    focus_person_id: str | None = None,
) -> ConstrainedModel:
    """Run Phase A, then (unless stopped after "A") Phase B, and merge the results."""
    phase_a = solve_phase_a(placed, config, max_iterations, tolerance, focus_person_id)
    phases = ["A"]

    measured = dataclasses.replace(
        phase_a.measured,
        blocks=copy.deepcopy(phase_a.measured.blocks),
        branches=copy.deepcopy(phase_a.measured.branches),
    )
    if stop_after_phase != "A":
        ancestors = solve_phase_b(phase_a)
        for block_id, x in ancestors.items():
            block = measured.blocks[block_id]
            if block.generation >= LOCKED_MIN_GEN:
                raise LockedPositionError(list(block.person_order))
            block.set_center(x, config)
        phases.append("B")

    recompute_extents(measured.blocks)
    person_x, union_x = extract_positions(measured, config)
    assert_locked_unchanged(phase_a.locked_person_x, person_x, tolerance)
    compute_branch_bounds(measured)

    return ConstrainedModel(
        placed=PlacedModel(measured=measured, person_x=person_x, union_x=union_x),
        iterations=phase_a.iterations,
        final_max_violation=phase_a.max_violation,
        phases_run=phases,
        locked_person_x=phase_a.locked_person_x,
    )


# ============================================================================
# Checks
# ============================================================================


def detect_interleaving(
    parent_block_id: str, blocks: dict[str, FamilyBlock]
) -> tuple[bool, list[str]]:
    """Report child subtrees of a block whose card extents overlap."""
    block = blocks.get(parent_block_id)
    if block is None or len(block.child_block_ids) < 2:
        return False, []

    extents = []
    for child_id in block.child_block_ids:
        left, right = subtree_card_extent(child_id, blocks)
        extents.append((left, right, child_id))
    extents.sort()

    details = []
    for (prev_left, prev_right, prev_id), (left, right, child_id) in zip(extents, extents[1:]):
        if left < prev_right:
            details.append(
                f"Block {child_id} [{left:.1f}, {right:.1f}] overlaps with "
                f"{prev_id} [{prev_left:.1f}, {prev_right:.1f}]"
            )
    return bool(details), details


def validate_subtree_isolation(
    measured: MeasuredModel, config: LayoutConfig
) -> tuple[bool, list[str]]:
    """Sibling subtrees must keep at least a horizontal gap between them."""
    violations = []
    for block in measured.blocks.values():
        children = sorted(
            (measured.blocks[c] for c in block.child_block_ids),
            key=lambda b: (b.x_left, b.id),
        )
        for prev, current in zip(children, children[1:]):
            if current.x_left < prev.x_right + config.horizontal_gap - 0.5:
                violations.append(f"Block {current.id} overlaps with {prev.id}")
    return not violations, violations


def validate_ancestor_envelope(
    measured: MeasuredModel, person_x: dict[str, float], config: LayoutConfig
) -> tuple[bool, list[str]]:
    """Ancestor couples should stay within a card width of their descendants' span."""
    model = measured.gen_model.model
    violations = []
    for block in measured.blocks.values():
        if block.generation >= 0:
            continue

        xs: list[float] = []
        queue = list(block.union_ids)
        seen: set[str] = set()
        while queue:
            union_id = queue.pop(0)
            if union_id in seen or union_id not in model.unions:
                continue
            seen.add(union_id)
            for child_id in model.unions[union_id].child_ids:
                if child_id in person_x:
                    xs.append(person_x[child_id])
                child_union_id = model.person_to_union.get(child_id)
                if child_union_id is not None:
                    queue.append(child_union_id)
        if not xs:
            continue

        low, high = min(xs), max(xs) + config.card_width
        if block.card_left < low - config.card_width or block.card_right > high + config.card_width:
            violations.append(
                f"Ancestor block {block.id} at [{block.card_left:.1f}, {block.card_right:.1f}] "
                f"exceeds descendant span [{low:.1f}, {high:.1f}]"
            )
    return not violations, violations
