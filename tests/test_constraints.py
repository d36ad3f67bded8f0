"""Tests for stemma.constraints: Phase A/B solving and locked positions."""

from __future__ import annotations

import pytest
from conftest import add_partnership, add_person, run_stages

from stemma.config import DEFAULT_LAYOUT_CONFIG
from stemma.constraints import (
    LOCKED_MIN_GEN,
    apply_constraints,
    assert_locked_unchanged,
    detect_interleaving,
    shift_subtree,
    solve_phase_a,
    solve_phase_b,
    subtree_card_extent,
    validate_ancestor_envelope,
    validate_subtree_isolation,
)
from stemma.errors import LockedPositionError
from stemma.measure import block_id_for
from stemma.models import FamilyData
from stemma.placement import shift_block

CONFIG = DEFAULT_LAYOUT_CONFIG


@pytest.fixture
def deep_family(three_generation_chain: FamilyData) -> FamilyData:
    """The three-generation chain plus a sibling for c1 and maternal grandparents."""
    data = three_generation_chain
    add_person(data, "c2", "female", "1983-01-01")
    data.partnerships["u_p"].child_ids.append("c2")
    for parent_id in ("p1", "p2"):
        data.persons[parent_id].child_ids.append("c2")
    data.persons["c2"].parent_ids = ["p1", "p2"]

    add_person(data, "mg1", "male", "1925-01-01")
    add_person(data, "mg2", "female", "1927-01-01")
    add_partnership(data, "u_mg", "mg1", "mg2", ("p2",))
    return data


def _gen(measured, person_id: str) -> int:
    return measured.gen_model.person_gen[person_id]


class TestPhaseA:
    def test_converges(self, three_married_children: FamilyData) -> None:
        _, _, placed = run_stages(three_married_children, "p1")
        result = solve_phase_a(placed, CONFIG, focus_person_id="p1")
        assert 1 <= result.iterations <= 20
        assert result.max_violation <= 0.5

    def test_locked_snapshot_is_read_only(self, deep_family: FamilyData) -> None:
        _, _, placed = run_stages(deep_family, "c1", 3, 1)
        result = solve_phase_a(placed, CONFIG, focus_person_id="c1")
        assert set(result.locked_person_x) == {"c1", "c2", "p1", "p2"}
        with pytest.raises(TypeError):
            result.locked_person_x["c1"] = 0.0  # type: ignore[index]

    def test_sibling_subtrees_do_not_interleave(self, three_married_children: FamilyData) -> None:
        _, _, placed = run_stages(three_married_children, "p1")
        result = solve_phase_a(placed, CONFIG, focus_person_id="p1")
        blocks = result.measured.blocks
        focus_id = result.measured.focus_block_id
        interleaved, details = detect_interleaving(focus_id, blocks)
        assert not interleaved, details

        extents = [subtree_card_extent(c, blocks) for c in blocks[focus_id].child_block_ids]
        for (_, right), (left, _) in zip(extents, extents[1:]):
            assert left - right == pytest.approx(CONFIG.horizontal_gap)

    def test_parent_centered_over_children(self, nuclear_family: FamilyData) -> None:
        _, _, placed = run_stages(nuclear_family, "c1")
        result = solve_phase_a(placed, CONFIG, focus_person_id="c1")
        blocks = result.measured.blocks
        parent = blocks[block_id_for("union_p1_p2")]
        c1 = blocks[block_id_for("union_c1_single")]
        c2 = blocks[block_id_for("union_c2_single")]
        assert parent.x_center == pytest.approx((c1.card_left + c2.card_right) / 2)


class TestPhaseB:
    def test_returns_only_old_generations(self, deep_family: FamilyData) -> None:
        _, _, placed = run_stages(deep_family, "c1", 3, 1)
        phase_a = solve_phase_a(placed, CONFIG, focus_person_id="c1")
        centers = solve_phase_b(phase_a)
        assert centers
        for block_id in centers:
            assert phase_a.measured.blocks[block_id].generation < LOCKED_MIN_GEN

    def test_paternal_left_maternal_right(self, deep_family: FamilyData) -> None:
        _, _, placed = run_stages(deep_family, "c1", 3, 1)
        constrained = apply_constraints(placed, CONFIG, focus_person_id="c1")
        x = constrained.placed.person_x
        assert x["g2"] + CONFIG.card_width <= x["mg1"]
        # Paternal tree ends at the father's right card edge
        assert x["g2"] + CONFIG.card_width <= x["p1"] + CONFIG.card_width + 0.5
        # Maternal tree starts at the mother's left card edge
        assert x["mg1"] >= x["p2"] - 0.5

    def test_no_overlap_in_ancestor_rows(self, deep_family: FamilyData) -> None:
        _, _, placed = run_stages(deep_family, "c1", 3, 1)
        constrained = apply_constraints(placed, CONFIG, focus_person_id="c1")
        measured = constrained.placed.measured
        for gen in (-3, -2):
            blocks = sorted(
                (b for b in measured.blocks.values() if b.generation == gen),
                key=lambda b: b.card_left,
            )
            for first, second in zip(blocks, blocks[1:]):
                assert first.card_right <= second.card_left


class TestLockedPositions:
    def test_phase_b_never_moves_locked_persons(self, deep_family: FamilyData) -> None:
        _, _, placed = run_stages(deep_family, "c1", 3, 1)
        only_a = apply_constraints(placed, CONFIG, stop_after_phase="A", focus_person_id="c1")
        full = apply_constraints(placed, CONFIG, focus_person_id="c1")

        assert only_a.phases_run == ["A"]
        assert full.phases_run == ["A", "B"]
        measured = full.placed.measured
        for person_id, x in only_a.placed.person_x.items():
            if _gen(measured, person_id) >= LOCKED_MIN_GEN:
                assert full.placed.person_x[person_id] == pytest.approx(x, abs=0.5)
        assert dict(full.locked_person_x) == dict(only_a.locked_person_x)

    def test_placed_model_is_not_modified(self, deep_family: FamilyData) -> None:
        _, _, placed = run_stages(deep_family, "c1", 3, 1)
        before = dict(placed.person_x)
        apply_constraints(placed, CONFIG, focus_person_id="c1")
        assert placed.person_x == before

    def test_assert_locked_unchanged(self) -> None:
        assert_locked_unchanged({"a": 10.0}, {"a": 10.3})
        with pytest.raises(LockedPositionError) as excinfo:
            assert_locked_unchanged({"a": 10.0, "b": 0.0}, {"a": 12.0, "b": 0.0})
        assert excinfo.value.moved == ["a"]


class TestChecks:
    def test_subtree_isolation_after_constraints(self, three_married_children: FamilyData) -> None:
        _, _, placed = run_stages(three_married_children, "p1")
        constrained = apply_constraints(placed, CONFIG, focus_person_id="p1")
        ok, violations = validate_subtree_isolation(constrained.placed.measured, CONFIG)
        assert ok, violations

    def test_ancestor_envelope(self, nuclear_family: FamilyData) -> None:
        _, _, placed = run_stages(nuclear_family, "c1")
        constrained = apply_constraints(placed, CONFIG, focus_person_id="c1")
        measured = constrained.placed.measured
        person_x = constrained.placed.person_x
        ok, violations = validate_ancestor_envelope(measured, person_x, CONFIG)
        assert ok, violations

        shift_block(measured.blocks[block_id_for("union_p1_p2")], 1000.0)
        ok, violations = validate_ancestor_envelope(measured, person_x, CONFIG)
        assert not ok
        assert "union_p1_p2" in violations[0]

    def test_interleaving_detected(self, three_married_children: FamilyData) -> None:
        _, _, placed = run_stages(three_married_children, "p1")
        blocks = placed.measured.blocks
        focus = blocks[placed.measured.focus_block_id]
        # Drop the second family onto the first
        first, second = focus.child_block_ids[:2]
        shift_subtree(second, blocks[first].x_center - blocks[second].x_center, blocks)
        interleaved, details = detect_interleaving(focus.id, blocks)
        assert interleaved
        assert details
