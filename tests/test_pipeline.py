"""End-to-end tests of the layout pipeline and its entry points."""

from __future__ import annotations

import math
import random

import pytest
from conftest import add_partnership, add_person

from stemma import (
    DEFAULT_LAYOUT_CONFIG,
    DisplayPolicy,
    FamilyData,
    LayoutCache,
    LayoutEngine,
    LayoutRequest,
    SelectionPolicy,
    compute_layout,
    constraints,
    run_layout_pipeline,
)
from stemma.measure import block_id_for

CONFIG = DEFAULT_LAYOUT_CONFIG


def _assert_no_overlap(result) -> None:
    rows: dict[float, list[float]] = {}
    for pos in result.positions.values():
        rows.setdefault(pos.y, []).append(pos.x)
    for xs in rows.values():
        xs.sort()
        for left, right in zip(xs, xs[1:]):
            assert right - left >= CONFIG.card_width + CONFIG.partner_gap - 0.5


class TestNuclearFamily:
    def test_positions_and_diagnostics(self, nuclear_family: FamilyData) -> None:
        result = run_layout_pipeline(nuclear_family, "c1")
        assert set(result.positions) == {"p1", "p2", "c1", "c2"}
        assert len(result.spouse_lines) == 1
        assert len(result.connections) == 1

        diagnostics = result.diagnostics
        assert diagnostics.total_persons == 4
        assert diagnostics.generation_range == (-1, 0)
        assert diagnostics.phases_run == ["A", "B"]
        assert diagnostics.routed_edges
        assert diagnostics.validation_passed, diagnostics.errors

    def test_rows_and_padding(self, nuclear_family: FamilyData) -> None:
        result = run_layout_pipeline(nuclear_family, "c1")
        positions = result.positions
        assert positions["p1"].y == positions["p2"].y == CONFIG.padding
        assert positions["c1"].y == CONFIG.padding + CONFIG.row_height
        assert math.isclose(min(p.x for p in positions.values()), CONFIG.padding, abs_tol=0.1)

    def test_partner_order_and_centering(self, nuclear_family: FamilyData) -> None:
        result = run_layout_pipeline(nuclear_family, "c1")
        positions = result.positions
        assert positions["p1"].x < positions["p2"].x
        assert positions["c1"].x < positions["c2"].x
        # The couple's midpoint sits over the children's midpoint
        couple_mid = (positions["p1"].x + positions["p2"].x) / 2
        children_mid = (positions["c1"].x + positions["c2"].x) / 2
        assert math.isclose(couple_mid, children_mid, abs_tol=1)


def test_deterministic(three_married_children: FamilyData) -> None:
    first = run_layout_pipeline(three_married_children, "p1")
    for _ in range(4):
        again = run_layout_pipeline(three_married_children, "p1")
        assert again.positions == first.positions
        assert again.connections == first.connections
        assert again.spouse_lines == first.spouse_lines
        assert again.branch_bounds == first.branch_bounds


def test_unknown_focus_gives_empty_result(nuclear_family: FamilyData) -> None:
    result = run_layout_pipeline(nuclear_family, "nobody")
    assert result.positions == {}
    assert result.connections == []
    assert result.diagnostics.total_persons == 0
    assert result.diagnostics.validation_passed


def test_generation_range_follows_ancestor_depth(three_generation_chain: FamilyData) -> None:
    result = run_layout_pipeline(three_generation_chain, "c1", ancestor_depth=3)
    assert result.diagnostics.generation_range == (-3, 0)
    assert result.positions["gg1"].y < result.positions["g1"].y < result.positions["p1"].y
    assert result.diagnostics.validation_passed, result.diagnostics.errors


class TestBranches:
    def test_branch_bounds_follow_birth_order(self, three_married_children: FamilyData) -> None:
        result = run_layout_pipeline(three_married_children, "p1")
        assert result.diagnostics.branch_count == 3
        bounds = [result.branch_bounds[f"branch_union_p1_p2_{i}"] for i in range(3)]
        for (_, left_max), (right_min, _) in zip(bounds, bounds[1:]):
            assert left_max < right_min

    def test_branch_contents_within_bounds(self, three_married_children: FamilyData) -> None:
        result = run_layout_pipeline(three_married_children, "p1")
        low, high = result.branch_bounds["branch_union_p1_p2_2"]
        for person_id in ("c", "c_sp", "c1", "c2"):
            x = result.positions[person_id].x
            assert low <= x and x + CONFIG.card_width <= high

    def test_no_overlap_and_valid(self, three_married_children: FamilyData) -> None:
        result = run_layout_pipeline(three_married_children, "p1")
        _assert_no_overlap(result)
        assert result.diagnostics.validation_passed, result.diagnostics.errors
        positions = result.positions
        couple_mid = (positions["c"].x + positions["c_sp"].x) / 2
        children_mid = (positions["c1"].x + positions["c2"].x) / 2
        assert math.isclose(couple_mid, children_mid, abs_tol=1)


class TestMultiplePartners:
    def test_chain_order(self, multi_partner: FamilyData) -> None:
        result = run_layout_pipeline(multi_partner, "m", ancestor_depth=1, descendant_depth=1)
        positions = result.positions
        assert positions["m"].x < positions["w2"].x < positions["w1"].x
        assert len(result.spouse_lines) == 2
        assert result.diagnostics.validation_passed, result.diagnostics.errors


def test_compute_layout_with_aunts_and_cousins(extended_family: FamilyData) -> None:
    policy = SelectionPolicy(include_aunts_uncles=True, include_cousins=True)
    result = compute_layout(extended_family, "f", policy)
    assert {"aunt", "aunt_sp", "cousin"} <= set(result.positions)
    assert result.positions["cousin"].y == result.positions["f"].y
    _assert_no_overlap(result)

    plain = compute_layout(extended_family, "f")
    assert "aunt" not in plain.positions


class TestLayoutEngine:
    def test_results_are_cached_by_key(self, nuclear_family: FamilyData) -> None:
        cache = LayoutCache()
        engine = LayoutEngine(cache)
        request = LayoutRequest(nuclear_family, "c1", cache_key="tree-1")

        first = engine.layout(request)
        second = engine.layout(request)
        assert second is first
        assert (cache.hits, cache.misses) == (1, 1)

    def test_no_cache_key_means_no_caching(self, nuclear_family: FamilyData) -> None:
        cache = LayoutCache()
        engine = LayoutEngine(cache)
        first = engine.layout(LayoutRequest(nuclear_family, "c1"))
        second = engine.layout(LayoutRequest(nuclear_family, "c1"))
        assert first is not second
        assert first.positions == second.positions
        assert len(cache) == 0

    def test_engine_without_cache(self, nuclear_family: FamilyData) -> None:
        result = LayoutEngine().layout(LayoutRequest(nuclear_family, "p1"))
        assert set(result.positions) == {"p1", "p2", "c1", "c2"}


def _family_with_nephew() -> FamilyData:
    data = FamilyData()
    add_person(data, "p1", "male", "1950-01-01")
    add_person(data, "p2", "female", "1952-01-01")
    add_person(data, "f", "male", "1980-01-01")
    add_person(data, "s", "female", "1982-01-01")
    add_person(data, "s_sp", "male", "1981-01-01")
    add_person(data, "k", "male", "2010-01-01")
    add_partnership(data, "u_p", "p1", "p2", ("f", "s"))
    add_partnership(data, "u_s", "s_sp", "s", ("k",))
    return data


class TestGenerationRows:
    def test_sibling_children_without_parents(self) -> None:
        result = run_layout_pipeline(_family_with_nephew(), "f", ancestor_depth=0, descendant_depth=1)
        positions = result.positions
        assert "p1" not in positions
        assert positions["s"].y == positions["f"].y == positions["s_sp"].y
        assert math.isclose(positions["k"].y - positions["s"].y, CONFIG.row_height)
        assert result.diagnostics.generation_range == (0, 1)
        _assert_no_overlap(result)

    def test_aunt_on_parent_row_without_grandparents(self, extended_family: FamilyData) -> None:
        policy = SelectionPolicy(ancestor_depth=1, include_aunts_uncles=True, include_cousins=True)
        result = compute_layout(extended_family, "f", policy)
        positions = result.positions
        assert "gp1" not in positions
        assert positions["aunt"].y == positions["father"].y
        assert positions["cousin"].y == positions["f"].y
        _assert_no_overlap(result)


class TestCollapsedPartners:
    def test_secondary_partner_beside_shared_person(self, multi_partner: FamilyData) -> None:
        result = run_layout_pipeline(
            multi_partner,
            "m",
            ancestor_depth=1,
            descendant_depth=1,
            display_policy=DisplayPolicy(auto_expand=False),
        )
        positions = result.positions
        step = CONFIG.card_width + CONFIG.partner_gap
        assert math.isclose(positions["w2"].x - positions["m"].x, step)
        assert math.isclose(positions["w1"].x - positions["w2"].x, step)
        assert {"k1", "k2"} <= set(positions)
        _assert_no_overlap(result)

    def test_earlier_husband_goes_left(self) -> None:
        data = FamilyData()
        add_person(data, "h1", "male", "1938-01-01")
        add_person(data, "h2", "male", "1945-01-01")
        add_person(data, "w", "female", "1940-01-01")
        add_person(data, "k1", "male", "1962-01-01")
        add_person(data, "k2", "female", "1972-01-01")
        add_partnership(data, "first", "h1", "w", ("k1",), status="divorced", start_date="1960-01-01")
        add_partnership(data, "second", "h2", "w", ("k2",), start_date="1970-01-01")

        result = run_layout_pipeline(
            data,
            "w",
            ancestor_depth=1,
            descendant_depth=1,
            display_policy=DisplayPolicy(auto_expand=False),
        )
        positions = result.positions
        assert positions["h1"].x < positions["h2"].x < positions["w"].x
        assert len(result.spouse_lines) == 2
        for line in result.spouse_lines:
            assert positions[line.person1_id].x < positions[line.person2_id].x
            assert line.x_max - line.x_min < 2 * CONFIG.card_width + 2 * CONFIG.partner_gap


class TestMalformedData:
    def test_partner_of_own_parent(self) -> None:
        data = FamilyData()
        for person_id in ("q01", "q02", "q03", "q04", "q05", "q06"):
            add_person(data, person_id)
        add_partnership(data, "a", "q02", "q03", ("q05", "q04"))
        add_partnership(data, "b", "q01", "q02", ("q03",))
        add_partnership(data, "c", "q05", "q01")

        result = run_layout_pipeline(data, "q04")
        assert {"q01", "q02", "q03", "q04", "q05"} <= set(result.positions)
        for pos in result.positions.values():
            assert math.isfinite(pos.x) and math.isfinite(pos.y)

    def test_remarried_couple_with_child_partner(self) -> None:
        data = FamilyData()
        for person_id in ("q02", "q03", "q04", "q05", "q06"):
            add_person(data, person_id)
        add_partnership(data, "first", "q03", "q02", ("q04",))
        add_partnership(data, "second", "q02", "q03", ("q05",))
        add_partnership(data, "third", "q04", "q03", ("q06",))

        result = run_layout_pipeline(data, "q06")
        assert set(result.positions) == {"q02", "q03", "q04", "q05", "q06"}
        assert not any(e.startswith("Locked positions") for e in result.diagnostics.errors)
        assert result.diagnostics.phases_run == ["A", "B"]

    def test_descent_cycle(self) -> None:
        data = FamilyData()
        add_person(data, "x", "male")
        add_person(data, "y", "female")
        add_person(data, "z", "male")
        add_partnership(data, "u", "x", "y", ("z",))
        data.persons["x"].parent_ids = ["z"]
        data.partnerships["u"].child_ids.append("x")

        result = run_layout_pipeline(data, "z")
        assert {"x", "y", "z"} <= set(result.positions)

    def test_locked_position_violation_is_reported(
        self, nuclear_family: FamilyData, monkeypatch
    ) -> None:
        monkeypatch.setattr(
            constraints, "solve_phase_b", lambda phase_a: {block_id_for("union_p1_p2"): 900.0}
        )
        result = run_layout_pipeline(nuclear_family, "c1")
        diagnostics = result.diagnostics
        assert diagnostics.errors[0] == "Locked positions changed: p1; p2"
        assert not diagnostics.validation_passed
        assert diagnostics.phases_run == ["A"]
        assert set(result.positions) == {"p1", "p2", "c1", "c2"}

    @pytest.mark.parametrize("seed", range(20))
    def test_random_families_never_raise(self, seed: int) -> None:
        rng = random.Random(seed)
        data = FamilyData()
        ids = [f"q{i:02d}" for i in range(16)]
        for person_id in ids:
            add_person(data, person_id, rng.choice(["male", "female", None]))
        for index in range(10):
            first, second = rng.sample(ids, 2)
            kids = tuple(k for k in rng.sample(ids, rng.randint(0, 3)) if k not in (first, second))
            add_partnership(data, f"u{index:02d}", first, second, kids)

        focus = ids[seed % len(ids)]
        result = run_layout_pipeline(data, focus, ancestor_depth=3, descendant_depth=3)
        assert focus in result.positions
        for pos in result.positions.values():
            assert math.isfinite(pos.x) and math.isfinite(pos.y)
