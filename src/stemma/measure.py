"""Stage 4: build family blocks and measure subtree widths."""

import logging

from stemma.build_model import get_child_unions
from stemma.config import LayoutConfig
from stemma.layout_types import (
    SIDE_BOTH,
    SIDE_HUSBAND,
    SIDE_WIFE,
    FamilyBlock,
    GenerationalModel,
    MeasuredModel,
    PartnerChain,
    SiblingFamilyBranch,
)

logger = logging.getLogger(__name__)


def block_id_for(union_id: str) -> str:
    return f"block_{union_id}"


class _BlockBuilder:
    """Builds the block forest for one generational model."""

    def __init__(self, gen_model: GenerationalModel, config: LayoutConfig):
        self.gen_model = gen_model
        self.model = gen_model.model
        self.config = config
        self.blocks: dict[str, FamilyBlock] = {}
        self.union_to_block: dict[str, str] = {}
        self.direct_line: set[str] = set()
        self.focus_block_id: str | None = None

        self.union_to_chain: dict[str, PartnerChain] = {}
        for chain in self.model.partner_chains.values():
            for union_id in chain.union_ids:
                self.union_to_chain.setdefault(union_id, chain)

    # ------------------------------------------------------------------
    # Block units
    # ------------------------------------------------------------------

    def _unit(self, union_id: str) -> list[str]:
        chain = self.union_to_chain.get(union_id)
        if chain is None:
            return [union_id]
        return [uid for uid in chain.union_ids if uid in self.model.unions]

    def _person_order(self, union_ids: list[str]) -> list[str]:
        primary = self.model.unions[union_ids[0]]
        lefts: list[str] = []
        rights: list[str] = []
        for union_id in union_ids[1:]:
            union = self.model.unions[union_id]
            if union.partner_b is None:
                continue
            shared = next((p for p in primary.partners if p in union.partners), None)
            if shared is None:
                continue
            if union.partner_a == shared:
                rights.append(union.partner_b)
            else:
                lefts.append(union.partner_a)

        # Extras sit on the side that keeps partner_a left of partner_b
        candidates = list(reversed(lefts)) + primary.partners + rights
        owned = set(union_ids)
        return [
            p
            for p in dict.fromkeys(candidates)
            if p in self.model.persons and self.model.person_to_union.get(p) in owned
        ]

    def _new_block(self, union_id: str, side: str, parent_block_id: str | None) -> FamilyBlock:
        unit = self._unit(union_id)
        primary = self.model.unions[unit[0]]
        generation = self.gen_model.union_gen.get(unit[0], 0)
        # Parent links always point one or more generations up, so blocks form a forest
        if parent_block_id is not None and self.blocks[parent_block_id].generation >= generation:
            parent_block_id = None
        block = FamilyBlock(
            id=block_id_for(unit[0]),
            root_union_id=unit[0],
            union_ids=unit,
            person_order=self._person_order(unit),
            generation=generation,
            side=side,
            husband_id=primary.partner_a,
            wife_id=primary.partner_b,
            parent_block_id=parent_block_id,
        )
        self.blocks[block.id] = block
        for uid in unit:
            self.union_to_block[uid] = block.id
        return block

    def ordered_unions(self, block: FamilyBlock) -> list[str]:
        """Block unions ordered left to right by where their partners sit."""
        if not block.is_chain:
            return list(block.union_ids)

        def key(item: tuple[int, str]) -> tuple[float, int]:
            index, union_id = item
            slots = [
                block.person_order.index(p)
                for p in self.model.unions[union_id].partners
                if p in block.person_order
            ]
            if not slots:
                return (float(len(block.person_order)), index)
            # A secondary union sits where its extra partner is
            if index > 0 and len(slots) > 1:
                shared = self.model.unions[block.root_union_id].partners
                slots = [s for s in slots if block.person_order[s] not in shared] or slots
            return (sum(slots) / len(slots), index)

        return [uid for _, uid in sorted(enumerate(block.union_ids), key=key)]

    def _child_unions(self, block: FamilyBlock) -> list[str]:
        result: list[str] = []
        for union_id in self.ordered_unions(block):
            for child_union_id in get_child_unions(union_id, self.model, self.gen_model):
                if child_union_id in block.union_ids or child_union_id in result:
                    continue
                result.append(child_union_id)
        return result

    def _attach_children(self, block: FamilyBlock, side: str, adopt_focus: bool) -> None:
        for child_union_id in self._child_unions(block):
            child_block_id = self.union_to_block.get(child_union_id)
            if child_block_id is None:
                child_block_id = self.build_descendants(child_union_id, block.id, side)
            child = self.blocks[child_block_id]
            if (
                child.parent_block_id is None
                and child.generation > block.generation
                and (adopt_focus or child_block_id != self.focus_block_id)
            ):
                child.parent_block_id = block.id
            if child.parent_block_id == block.id and child_block_id not in block.child_block_ids:
                block.child_block_ids.append(child_block_id)

    # ------------------------------------------------------------------
    # Descendants and ancestors
    # ------------------------------------------------------------------

    def build_descendants(self, union_id: str, parent_block_id: str | None, side: str) -> str:
        existing = self.union_to_block.get(union_id)
        if existing is not None:
            return existing
        block = self._new_block(union_id, side, parent_block_id)
        self._attach_children(block, side, adopt_focus=False)
        return block.id

    def build_ancestors(self, child_block: FamilyBlock, person_id: str, side: str) -> None:
        parent_union_id = self.model.child_to_parent_union.get(person_id)
        if parent_union_id is None or parent_union_id not in self.model.unions:
            return
        if self.gen_model.union_gen.get(parent_union_id, 0) >= child_block.generation:
            return
        if parent_union_id in self.union_to_block:
            return

        block = self._new_block(parent_union_id, side, None)
        self.direct_line.add(block.id)
        # Adopts the direct-line child and builds its siblings beneath
        self._attach_children(block, side, adopt_focus=True)

        side_a = SIDE_HUSBAND if side == SIDE_BOTH else side
        side_b = SIDE_WIFE if side == SIDE_BOTH else side
        if block.husband_id is not None:
            self.build_ancestors(block, block.husband_id, side_a)
        if block.wife_id is not None:
            self.build_ancestors(block, block.wife_id, side_b)

    # ------------------------------------------------------------------
    # Widths
    # ------------------------------------------------------------------

    def measure(self) -> None:
        card = self.config.card_width
        for block in sorted(self.blocks.values(), key=lambda b: -b.generation):
            n = max(1, len(block.person_order))
            block.couple_width = n * card + (n - 1) * self.config.partner_gap
            children = [self.blocks[c] for c in block.child_block_ids]
            if children:
                block.children_width = sum(c.width for c in children) + (
                    len(children) - 1
                ) * self.config.horizontal_gap
            else:
                block.children_width = 0.0
            block.width = max(block.couple_width, block.children_width)

        # Envelopes: direct-line ancestors also make room for both parents' envelopes
        for block in sorted(self.blocks.values(), key=lambda b: b.generation):
            block.envelope_width = block.width
            if block.id in self.direct_line or block.id == self.focus_block_id:
                parent_envelopes = [
                    self.blocks[pid].envelope_width
                    for pid in (
                        self._parent_block_of(block.husband_id, block),
                        self._parent_block_of(block.wife_id, block),
                    )
                    if pid is not None
                ]
                if parent_envelopes:
                    needed = sum(parent_envelopes) + (
                        len(parent_envelopes) - 1
                    ) * self.config.horizontal_gap
                    block.envelope_width = max(block.width, needed)
            block.left_extent = block.envelope_width / 2
            block.right_extent = block.envelope_width / 2

    def _parent_block_of(self, person_id: str | None, block: FamilyBlock) -> str | None:
        if person_id is None or person_id not in block.person_order:
            return None
        parent_union_id = self.model.child_to_parent_union.get(person_id)
        parent_block_id = self.union_to_block.get(parent_union_id) if parent_union_id else None
        if parent_block_id is None or parent_block_id not in self.direct_line:
            return None
        if self.blocks[parent_block_id].generation >= block.generation:
            return None
        return parent_block_id


def _child_person_in(builder: _BlockBuilder, block: FamilyBlock, parent: FamilyBlock) -> str:
    for person_id in block.person_order:
        if builder.model.child_to_parent_union.get(person_id) in parent.union_ids:
            return person_id
    return block.person_order[0] if block.person_order else block.root_union_id


class _BranchBuilder:
    def __init__(self, builder: _BlockBuilder, measured: MeasuredModel):
        self.builder = builder
        self.blocks = builder.blocks
        self.measured = measured

    def qualifies(self, block_id: str) -> bool:
        block = self.blocks[block_id]
        return len(block.person_order) >= 2 or bool(block.child_block_ids)

    def build(self, focus_block_id: str) -> None:
        focus = self.blocks[focus_block_id]
        candidates = [
            c
            for c in focus.child_block_ids
            if self.blocks[c].generation > focus.generation and self.qualifies(c)
        ]
        if len(candidates) < 2:
            return
        for index, block_id in enumerate(candidates):
            branch = self._new_branch(focus, block_id, index, None)
            self.measured.top_level_branch_ids.append(branch.id)
            self.collect(branch, block_id)

    def _new_branch(
        self, parent: FamilyBlock, block_id: str, index: int, parent_branch_id: str | None
    ) -> SiblingFamilyBranch:
        block = self.blocks[block_id]
        branch = SiblingFamilyBranch(
            id=f"branch_{parent.root_union_id}_{index}",
            parent_union_id=parent.root_union_id,
            root_block_id=block_id,
            child_person_id=_child_person_in(self.builder, block, parent),
            sibling_index=index,
            envelope_width=block.envelope_width,
            parent_branch_id=parent_branch_id,
            generation=block.generation,
        )
        self.measured.branches[branch.id] = branch
        self.measured.parent_union_to_branches.setdefault(parent.root_union_id, []).append(
            branch.id
        )
        return branch

    def _assign(self, branch: SiblingFamilyBranch, block: FamilyBlock) -> None:
        branch.block_ids.add(block.id)
        branch.union_ids.update(block.union_ids)
        block.branch_id = branch.id
        self.measured.block_to_branch[block.id] = branch.id
        for union_id in block.union_ids:
            self.measured.union_to_branch[union_id] = branch.id

    def collect(self, branch: SiblingFamilyBranch, block_id: str) -> None:
        block = self.blocks[block_id]
        if block.generation < 0:
            return
        self._assign(branch, block)

        kids = [c for c in block.child_block_ids if self.blocks[c].generation >= 0]
        qualifying = [c for c in kids if self.qualifies(c)]
        for kid in kids:
            if len(qualifying) >= 2 and kid in qualifying:
                sub = self._new_branch(block, kid, qualifying.index(kid), branch.id)
                branch.child_branch_ids.append(sub.id)
                self.collect(sub, kid)
                branch.block_ids |= sub.block_ids
                branch.union_ids |= sub.union_ids
            else:
                self.collect(branch, kid)


def measure_subtrees(
    gen_model: GenerationalModel, config: LayoutConfig, focus_person_id: str | None = None
) -> MeasuredModel:
    """
    Build family blocks and compute their widths bottom-up.

    Args:
        gen_model: Output of assign_generations
        config: Layout configuration
        focus_person_id: Focus person; blocks are built around its union

    Returns:
        The measured model with blocks, legacy width maps and branches
    """
    model = gen_model.model
    builder = _BlockBuilder(gen_model, config)

    focus_union_id = model.person_to_union.get(focus_person_id) if focus_person_id else None
    if focus_union_id is not None:
        builder.focus_block_id = block_id_for(builder._unit(focus_union_id)[0])
        builder.build_descendants(focus_union_id, None, SIDE_BOTH)
        focus_block = builder.blocks[builder.focus_block_id]
        builder.build_ancestors(focus_block, focus_person_id, SIDE_BOTH)
        primary = model.unions[focus_block.root_union_id]
        for partner_id in primary.partners:
            if partner_id == focus_person_id:
                continue
            side = SIDE_WIFE if partner_id == primary.partner_b else SIDE_HUSBAND
            builder.build_ancestors(focus_block, partner_id, side)

    for union_id in sorted(model.unions, key=lambda u: (gen_model.union_gen.get(u, 0), u)):
        if union_id not in builder.union_to_block:
            builder.build_descendants(union_id, None, SIDE_BOTH)

    builder.measure()

    person_width = {pid: float(config.card_width) for pid in model.persons}
    union_width: dict[str, float] = {}
    subtree_width: dict[str, float] = {}
    for union_id, union in model.unions.items():
        union_width[union_id] = (
            2 * config.card_width + config.partner_gap
            if union.partner_b is not None
            else float(config.card_width)
        )
        block_id = builder.union_to_block.get(union_id)
        if block_id is not None:
            subtree_width[union_id] = builder.blocks[block_id].width

    root_block_ids = [bid for bid, b in builder.blocks.items() if b.parent_block_id is None]

    measured = MeasuredModel(
        gen_model=gen_model,
        person_width=person_width,
        union_width=union_width,
        subtree_width=subtree_width,
        blocks=builder.blocks,
        root_block_ids=root_block_ids,
        union_to_block=builder.union_to_block,
        focus_block_id=builder.focus_block_id,
    )
    if builder.focus_block_id is not None:
        _BranchBuilder(builder, measured).build(builder.focus_block_id)

    logger.debug(
        "Measured %d blocks, %d branches (%d top level)",
        len(measured.blocks),
        len(measured.branches),
        len(measured.top_level_branch_ids),
    )
    return measured
