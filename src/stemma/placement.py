"""Stage 5: initial horizontal placement of family blocks."""

import copy
import dataclasses
import logging

from stemma.config import LayoutConfig
from stemma.layout_types import (
    SIDE_HUSBAND,
    SIDE_WIFE,
    FamilyBlock,
    MeasuredModel,
    PlacedModel,
)

logger = logging.getLogger(__name__)

LEFT = "LEFT"
RIGHT = "RIGHT"
NATURAL = "NATURAL"


def shift_block(block: FamilyBlock, dx: float) -> None:
    """Move a block rigidly, keeping any widened extent."""
    block.x_center += dx
    block.x_left += dx
    block.x_right += dx
    block.husband_anchor_x += dx
    block.wife_anchor_x += dx
    block.couple_center_x += dx
    block.children_center_x += dx


def card_bounds(blocks: list[FamilyBlock]) -> tuple[float, float] | None:
    if not blocks:
        return None
    return min(b.card_left for b in blocks), max(b.card_right for b in blocks)


class _Placer:
    def __init__(self, measured: MeasuredModel, config: LayoutConfig):
        self.measured = measured
        self.model = measured.gen_model.model
        self.blocks = measured.blocks
        self.config = config
        self.placed: set[str] = set()

    def shift_subtree(self, block_id: str, dx: float) -> None:
        stack = [block_id]
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            block = self.blocks[current]
            shift_block(block, dx)
            stack.extend(block.child_block_ids)

    def _update_extent(self, block: FamilyBlock) -> None:
        children = [self.blocks[c] for c in block.child_block_ids]
        left = [block.card_left] + [c.x_left for c in children]
        right = [block.card_right] + [c.x_right for c in children]
        block.x_left = min(left)
        block.x_right = max(right)
        if children:
            block.children_center_x = (children[0].x_center + children[-1].x_center) / 2
        else:
            block.children_center_x = block.x_center

    def place_descendants(self, parent: FamilyBlock, seen: set[str] | None = None) -> None:
        seen = set() if seen is None else seen
        if parent.id in seen:
            return
        seen.add(parent.id)

        children = [self.blocks[c] for c in parent.child_block_ids if c not in seen]
        if not children:
            self._update_extent(parent)
            return

        total = sum(c.envelope_width for c in children)
        total += (len(children) - 1) * self.config.horizontal_gap
        x = parent.x_center - total / 2
        for child in children:
            child.set_center(x + child.envelope_width / 2, self.config)
            self.placed.add(child.id)
            x += child.envelope_width + self.config.horizontal_gap

        left, right = card_bounds(children)
        correction = parent.x_center - (left + right) / 2
        if abs(correction) > 0.001:
            for child in children:
                shift_block(child, correction)

        for child in children:
            self.place_descendants(child, seen)
        self._update_extent(parent)

    def _place_one_sibling(self, sibling: FamilyBlock, center: float) -> None:
        sibling.set_center(center, self.config)
        self.placed.add(sibling.id)
        self.place_descendants(sibling)

    def place_siblings_around(self, parent: FamilyBlock, anchor: FamilyBlock, direction: str) -> None:
        gap = self.config.horizontal_gap
        child_ids = parent.child_block_ids
        if anchor.id in child_ids:
            index = child_ids.index(anchor.id)
            before = list(reversed(child_ids[:index]))
            after = child_ids[index + 1:]
        else:
            before, after = [], list(child_ids)

        if direction == LEFT:
            left_ids, right_ids = after + before, []
        elif direction == RIGHT:
            left_ids, right_ids = [], before + after
        else:
            left_ids, right_ids = before, after

        right_edge = anchor.x_right
        for sibling_id in right_ids:
            sibling = self.blocks[sibling_id]
            if sibling_id in self.placed:
                right_edge = max(right_edge, sibling.x_right)
                continue
            self._place_one_sibling(sibling, right_edge + gap + sibling.envelope_width / 2)
            right_edge = sibling.x_right

        left_edge = anchor.x_left
        for sibling_id in left_ids:
            sibling = self.blocks[sibling_id]
            if sibling_id in self.placed:
                left_edge = min(left_edge, sibling.x_left)
                continue
            self._place_one_sibling(sibling, left_edge - gap - sibling.envelope_width / 2)
            left_edge = sibling.x_left

    def center_over_children(self, block: FamilyBlock, anchor: FamilyBlock | None = None) -> None:
        children = [self.blocks[c] for c in block.child_block_ids]
        if anchor is not None and anchor.id not in block.child_block_ids:
            children.append(anchor)
        bounds = card_bounds(children)
        if bounds is not None:
            block.set_center((bounds[0] + bounds[1]) / 2, self.config)
        self._update_extent(block)

    # ------------------------------------------------------------------
    # Ancestors
    # ------------------------------------------------------------------

    def parent_block_id(self, person_id: str | None, block: FamilyBlock) -> str | None:
        if person_id is None or person_id not in block.person_order:
            return None
        parent_union_id = self.model.child_to_parent_union.get(person_id)
        if parent_union_id is None:
            return None
        parent_block_id = self.measured.union_to_block.get(parent_union_id)
        if parent_block_id is None or self.blocks[parent_block_id].generation >= block.generation:
            return None
        return parent_block_id

    def place_ancestor_line(self, block_id: str, anchor: FamilyBlock) -> None:
        if block_id in self.placed:
            return
        block = self.blocks[block_id]
        direction = {SIDE_HUSBAND: LEFT, SIDE_WIFE: RIGHT}.get(block.side, NATURAL)

        self.place_siblings_around(block, anchor, direction)
        self.center_over_children(block, anchor)
        self.placed.add(block_id)

        for person_id in (block.husband_id, block.wife_id):
            parent_id = self.parent_block_id(person_id, block)
            if parent_id is not None:
                self.place_ancestor_line(parent_id, block)

    def place_remaining(self) -> None:
        """Put unreached blocks to the right of everything placed so far."""
        for block in sorted(self.blocks.values(), key=lambda b: (b.generation, b.id)):
            if block.id in self.placed:
                continue
            top = block
            climbed = {block.id}
            while top.parent_block_id is not None and top.parent_block_id not in self.placed:
                if top.parent_block_id in climbed:
                    logger.warning("Block parent loop at %s, placing it as a root", top.id)
                    break
                top = self.blocks[top.parent_block_id]
                climbed.add(top.id)
            placed_blocks = [self.blocks[b] for b in self.placed]
            right = max((b.x_right for b in placed_blocks), default=-self.config.horizontal_gap)
            top.set_center(right + self.config.horizontal_gap + top.envelope_width / 2, self.config)
            self.placed.add(top.id)
            self.place_descendants(top)


def extract_positions(
    measured: MeasuredModel, config: LayoutConfig
) -> tuple[dict[str, float], dict[str, float]]:
    """
    Read card left edges and union stem points off the placed blocks.

    Returns:
        (person_x, union_x). A secondary chain union's stem point is the
        center of its extra partner; any other union uses the midpoint of
        its partners in the block.
    """
    model = measured.gen_model.model
    person_x: dict[str, float] = {}
    union_x: dict[str, float] = {}

    for block in measured.blocks.values():
        for person_id in block.person_order:
            person_x[person_id] = block.person_left(person_id, config)

        shared = model.unions[block.root_union_id].partners
        for union_id in block.union_ids:
            union = model.unions[union_id]
            if union_id != block.root_union_id:
                extra = [p for p in union.partners if p not in shared and p in block.person_order]
                if extra:
                    union_x[union_id] = block.person_center(extra[0], config)
                    continue
            centers = [
                block.person_center(p, config) for p in union.partners if p in block.person_order
            ]
            union_x[union_id] = sum(centers) / len(centers) if centers else block.x_center

    return person_x, union_x


def compute_branch_bounds(measured: MeasuredModel) -> None:
    """Set min_x/max_x of every branch from the card extents of its blocks."""
    for branch in measured.branches.values():
        blocks = [measured.blocks[b] for b in branch.block_ids if b in measured.blocks]
        bounds = card_bounds(blocks)
        if bounds is None:
            continue
        branch.min_x, branch.max_x = bounds
        branch.envelope_width = branch.max_x - branch.min_x


def place_x(measured: MeasuredModel, config: LayoutConfig) -> PlacedModel:
    """
    Place every block horizontally.

    The focus block goes to x = 0 with its descendants centered beneath it.
    Ancestors follow upward from the focus's parents, with the siblings of a
    paternal ancestor placed to the left and those of a maternal ancestor to
    the right. Blocks reached by neither walk are put to the right.

    The measured model is not modified; the placed model carries a copy.
    """
    measured = dataclasses.replace(
        measured,
        blocks=copy.deepcopy(measured.blocks),
        branches=copy.deepcopy(measured.branches),
    )
    placer = _Placer(measured, config)

    if measured.focus_block_id is not None:
        focus = measured.blocks[measured.focus_block_id]
        focus.set_center(0.0, config)
        placer.placed.add(focus.id)
        placer.place_descendants(focus)

        for person_id in focus.person_order:
            parent_id = placer.parent_block_id(person_id, focus)
            if parent_id is not None:
                placer.place_ancestor_line(parent_id, focus)

    placer.place_remaining()

    person_x, union_x = extract_positions(measured, config)
    compute_branch_bounds(measured)
    logger.debug("Placed %d blocks, %d persons", len(placer.placed), len(person_x))
    return PlacedModel(measured=measured, person_x=person_x, union_x=union_x)
