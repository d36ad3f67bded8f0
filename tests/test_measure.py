"""Tests for stemma.measure and stemma.placement."""

from __future__ import annotations

from conftest import add_partnership, add_person, run_stages

from stemma.config import DEFAULT_LAYOUT_CONFIG, DisplayPolicy
from stemma.layout_types import SIDE_HUSBAND, SIDE_WIFE
from stemma.measure import block_id_for
from stemma.models import FamilyData

CARD = DEFAULT_LAYOUT_CONFIG.card_width
PARTNER_GAP = DEFAULT_LAYOUT_CONFIG.partner_gap
GAP = DEFAULT_LAYOUT_CONFIG.horizontal_gap


class TestBlocks:
    def test_couple_width(self, nuclear_family: FamilyData) -> None:
        _, measured, _ = run_stages(nuclear_family, "c1")
        block = measured.blocks[block_id_for("union_p1_p2")]
        assert block.person_order == ["p1", "p2"]
        assert block.couple_width == 2 * CARD + PARTNER_GAP
        assert block.children_width == 2 * CARD + GAP
        assert block.width == max(block.couple_width, block.children_width)

    def test_focus_block_and_parent_link(self, nuclear_family: FamilyData) -> None:
        _, measured, _ = run_stages(nuclear_family, "c1")
        assert measured.focus_block_id == block_id_for("union_c1_single")
        focus = measured.blocks[measured.focus_block_id]
        assert focus.parent_block_id == block_id_for("union_p1_p2")
        assert measured.root_block_ids == [block_id_for("union_p1_p2")]

    def test_ancestor_sides(self, extended_family: FamilyData) -> None:
        _, measured, _ = run_stages(extended_family, "f")
        assert measured.blocks[block_id_for("union_gp1_gp2")].side == SIDE_HUSBAND

        # Give the mother parents too
        add_person(extended_family, "mgp1", "male")
        add_person(extended_family, "mgp2", "female")
        add_partnership(extended_family, "u_mgp", "mgp1", "mgp2", ("mother",))
        _, measured, _ = run_stages(extended_family, "f")
        assert measured.blocks[block_id_for("union_mgp1_mgp2")].side == SIDE_WIFE

    def test_chain_block_holds_every_partner(self, multi_partner: FamilyData) -> None:
        _, measured, _ = run_stages(multi_partner, "m", 1, 1)
        block = measured.blocks[block_id_for("union_m_w2")]
        assert block.union_ids == ["union_m_w2", "union_m_w1"]
        assert block.person_order == ["m", "w2", "w1"]
        assert block.couple_width == 3 * CARD + 2 * PARTNER_GAP
        assert measured.union_to_block["union_m_w1"] == block.id

    def test_collapsed_partner_joins_shared_block(self, multi_partner: FamilyData) -> None:
        _, measured, _ = run_stages(
            multi_partner, "m", 1, 1, display_policy=DisplayPolicy(auto_expand=False)
        )
        assert block_id_for("union_m_w1") not in measured.blocks
        block = measured.blocks[block_id_for("union_m_w2")]
        assert block.person_order == ["m", "w2", "w1"]


class TestBranches:
    def test_three_branches(self, three_married_children: FamilyData) -> None:
        _, measured, _ = run_stages(three_married_children, "p1")
        assert len(measured.top_level_branch_ids) == 3
        branches = [measured.branches[b] for b in measured.top_level_branch_ids]
        assert [b.sibling_index for b in branches] == [0, 1, 2]
        assert [b.child_person_id for b in branches] == ["a", "b", "c"]
        assert measured.block_to_branch[block_id_for("union_c1_single")] == branches[2].id

    def test_branch_blocks_are_disjoint(self, three_married_children: FamilyData) -> None:
        _, measured, _ = run_stages(three_married_children, "p1")
        seen: set[str] = set()
        for branch_id in measured.top_level_branch_ids:
            blocks = measured.branches[branch_id].block_ids
            assert not blocks & seen
            seen |= blocks

    def test_unmarried_children_give_no_branches(self, nuclear_family: FamilyData) -> None:
        _, measured, _ = run_stages(nuclear_family, "p1")
        # Two unmarried, childless children do not qualify
        assert measured.branches == {}


class TestPlacement:
    def test_focus_block_centered_at_zero(self, three_married_children: FamilyData) -> None:
        _, _, placed = run_stages(three_married_children, "p1")
        focus = placed.measured.blocks[placed.measured.focus_block_id]
        assert focus.x_center == 0.0

    def test_partners_adjacent(self, nuclear_family: FamilyData) -> None:
        _, _, placed = run_stages(nuclear_family, "c1")
        assert placed.person_x["p2"] - placed.person_x["p1"] == CARD + PARTNER_GAP

    def test_union_x_is_partner_midpoint(self, nuclear_family: FamilyData) -> None:
        _, _, placed = run_stages(nuclear_family, "c1")
        expected = (placed.person_x["p1"] + placed.person_x["p2"]) / 2 + CARD / 2
        assert placed.union_x["union_p1_p2"] == expected

    def test_secondary_chain_union_hangs_from_extra_partner(self, multi_partner: FamilyData) -> None:
        _, _, placed = run_stages(multi_partner, "m", 1, 1)
        assert placed.union_x["union_m_w1"] == placed.person_x["w1"] + CARD / 2

    def test_placement_does_not_touch_measured_blocks(self, nuclear_family: FamilyData) -> None:
        _, measured, placed = run_stages(nuclear_family, "c1")
        assert placed.measured.blocks is not measured.blocks
        assert all(b.x_center == 0.0 for b in measured.blocks.values())
