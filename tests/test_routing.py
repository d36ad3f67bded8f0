"""Tests for stemma.routing: buses, lanes, elbow clearance and spouse lines."""

from __future__ import annotations

import pytest
from conftest import run_stages

from stemma.config import DEFAULT_LAYOUT_CONFIG
from stemma.constraints import apply_constraints
from stemma.layout_types import ChildDrop, Connection
from stemma.models import FamilyData
from stemma.routing import (
    SPOUSE_LINE_SPACING,
    detect_bus_collisions,
    detect_staircase_edges,
    generation_y,
    resolve_bus_collisions,
    resolve_elbow_clearance,
    route_edges,
    validate_no_staircase_edges,
)

CONFIG = DEFAULT_LAYOUT_CONFIG


def _conn(union_id: str, stem_x: float, drop_xs: list[float], branch_y: float = 100.0) -> Connection:
    drops = [ChildDrop(f"{union_id}_{i}", x, branch_y, branch_y + 45) for i, x in enumerate(drop_xs)]
    left, right = min(drop_xs), max(drop_xs)
    return Connection(
        union_id=union_id,
        stem_x=stem_x,
        stem_top_y=40.0,
        stem_bottom_y=branch_y,
        branch_y=branch_y,
        branch_left_x=left,
        branch_right_x=right,
        connector_from_x=stem_x,
        connector_to_x=min(max(stem_x, left), right),
        connector_y=branch_y,
        drops=drops,
    )


def _route(data: FamilyData, focus: str, ancestors: int = 2, descendants: int = 2):
    _, _, placed = run_stages(data, focus, ancestors, descendants)
    constrained = apply_constraints(placed, CONFIG, focus_person_id=focus)
    return route_edges(constrained, CONFIG)


def test_generation_y() -> None:
    assert generation_y(-1, 1, CONFIG) == {-1: 50, 0: 195, 1: 340}


class TestRouteEdges:
    def test_bus_runs_halfway_between_rows(self, nuclear_family: FamilyData) -> None:
        routed = _route(nuclear_family, "c1")
        assert len(routed.connections) == 1
        conn = routed.connections[0]
        assert conn.union_id == "union_p1_p2"
        assert conn.stem_top_y == 50 + CONFIG.card_height / 2
        assert conn.branch_y == (50 + CONFIG.card_height + 195) / 2
        assert conn.stem_x == routed.constrained.placed.union_x["union_p1_p2"]
        assert [d.person_id for d in conn.drops] == ["c1", "c2"]
        assert all(d.bottom_y == 195 for d in conn.drops)

    def test_spouse_line_between_cards(self, nuclear_family: FamilyData) -> None:
        routed = _route(nuclear_family, "c1")
        (line,) = routed.spouse_lines
        person_x = routed.constrained.placed.person_x
        assert (line.person1_id, line.person2_id) == ("p1", "p2")
        assert line.partnership_id == "u1"
        assert line.x_min == person_x["p1"] + CONFIG.card_width
        assert line.x_max == person_x["p2"]
        assert line.y == 50 + CONFIG.card_height / 2

    def test_no_staircase_in_routed_tree(self, three_married_children: FamilyData) -> None:
        routed = _route(three_married_children, "p1")
        assert len(routed.connections) == 4
        assert validate_no_staircase_edges(routed.connections)
        for conn in routed.connections:
            assert conn.connector_y == conn.branch_y

    def test_chain_spouse_lines_fan_out(self, multi_partner: FamilyData) -> None:
        routed = _route(multi_partner, "m", 1, 1)
        lines = {line.union_id: line for line in routed.spouse_lines}
        assert lines["union_m_w1"].y - lines["union_m_w2"].y == SPOUSE_LINE_SPACING

    def test_secondary_union_hangs_from_card_bottom(self, multi_partner: FamilyData) -> None:
        routed = _route(multi_partner, "m", 1, 1)
        conns = {c.union_id: c for c in routed.connections}
        # m sits on the top row
        row_y = CONFIG.padding
        assert conns["union_m_w1"].stem_top_y == row_y + CONFIG.card_height
        assert conns["union_m_w2"].stem_top_y == row_y + CONFIG.card_height / 2


class TestBusLanes:
    def test_overlapping_bus_moves_to_next_lane(self) -> None:
        first = _conn("a", 130, [50, 100])
        second = _conn("b", 200, [120, 250])
        assert len(detect_bus_collisions([first, second])) == 1

        resolve_bus_collisions([first, second], CONFIG)
        assert first.branch_y == 100
        assert second.branch_y == 108
        assert second.connector_y == 108
        assert all(d.top_y == 108 for d in second.drops)
        assert detect_bus_collisions([first, second]) == []

    def test_bus_stays_when_lane_change_would_cross(self) -> None:
        first = _conn("a", 100, [50, 150])
        second = _conn("b", 200, [140, 260])
        resolve_bus_collisions([first, second], CONFIG)
        # A lane-0 drop lies inside the second footprint
        assert second.branch_y == 100

    def test_disjoint_buses_are_left_alone(self) -> None:
        first = _conn("a", 50, [0, 100])
        second = _conn("b", 300, [250, 350])
        resolve_bus_collisions([first, second], CONFIG)
        assert first.branch_y == second.branch_y == 100


class TestElbowClearance:
    def test_drop_is_nudged_away_from_stem(self) -> None:
        stem_owner = _conn("a", 100, [60])
        neighbour = _conn("b", 300, [105, 300])
        resolve_elbow_clearance([stem_owner, neighbour], CONFIG)

        assert neighbour.drops[0].x == pytest.approx(100 + CONFIG.min_edge_clearance)
        assert neighbour.branch_left_x == neighbour.drops[0].x
        assert neighbour.connector_to_x == 300
        # Stems never move
        assert stem_owner.stem_x == 100
        assert neighbour.stem_x == 300

    def test_clear_elbows_unchanged(self) -> None:
        first = _conn("a", 100, [60])
        second = _conn("b", 300, [200, 300])
        resolve_elbow_clearance([first, second], CONFIG)
        assert [d.x for d in second.drops] == [200, 300]


def test_staircase_detected() -> None:
    conn = _conn("a", 0, [50, 100])
    conn.connector_to_x = 50
    conn.connector_y = 90
    violations = detect_staircase_edges([conn])
    assert len(violations) == 1
    assert violations[0].union_id == "a"
    assert violations[0].horizontal_segment_count == 2
    assert not validate_no_staircase_edges([conn])
