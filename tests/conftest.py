"""Shared fixtures: small family data sets built through a tiny helper API."""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from stemma.build_model import build_layout_model  # noqa: E402
from stemma.config import DEFAULT_LAYOUT_CONFIG, DisplayPolicy  # noqa: E402
from stemma.generations import assign_generations  # noqa: E402
from stemma.measure import measure_subtrees  # noqa: E402
from stemma.models import FamilyData, Partnership, Person  # noqa: E402
from stemma.pipeline import effective_display_policy  # noqa: E402
from stemma.placement import place_x  # noqa: E402
from stemma.selection import expand_selection_for_display, select_subgraph  # noqa: E402


def add_person(
    data: FamilyData,
    person_id: str,
    gender: str | None = None,
    birth_date: str | None = None,
    first_name: str | None = None,
) -> Person:
    person = Person(
        id=person_id,
        first_name=first_name or person_id.capitalize(),
        gender=gender,
        birth_date=birth_date,
    )
    data.persons[person_id] = person
    return person


def add_partnership(
    data: FamilyData,
    partnership_id: str,
    person1_id: str,
    person2_id: str,
    child_ids: tuple[str, ...] = (),
    status: str = "married",
    start_date: str | None = None,
) -> Partnership:
    """Add a partnership and keep the persons' partnership/parent/child lists in sync."""
    partnership = Partnership(
        id=partnership_id,
        person1_id=person1_id,
        person2_id=person2_id,
        child_ids=list(child_ids),
        status=status,
        start_date=start_date,
    )
    data.partnerships[partnership_id] = partnership
    for parent_id in (person1_id, person2_id):
        data.persons[parent_id].partnerships.append(partnership_id)
        for child_id in child_ids:
            if child_id not in data.persons[parent_id].child_ids:
                data.persons[parent_id].child_ids.append(child_id)
    for child_id in child_ids:
        data.persons[child_id].parent_ids = [person1_id, person2_id]
    return partnership


def run_stages(
    data: FamilyData,
    focus_person_id: str,
    ancestor_depth: int = 2,
    descendant_depth: int = 2,
    display_policy: DisplayPolicy | None = None,
):
    """Stages 1-5, returning (gen_model, measured, placed)."""
    selection = select_subgraph(data, focus_person_id, ancestor_depth, descendant_depth)
    policy = effective_display_policy(
        data, focus_person_id, selection, display_policy or DisplayPolicy()
    )
    selection = expand_selection_for_display(data, selection, policy)
    model = build_layout_model(data, selection, focus_person_id, policy)
    gen_model = assign_generations(model, focus_person_id)
    measured = measure_subtrees(gen_model, DEFAULT_LAYOUT_CONFIG, focus_person_id)
    placed = place_x(measured, DEFAULT_LAYOUT_CONFIG)
    return gen_model, measured, placed


@pytest.fixture
def nuclear_family() -> FamilyData:
    """Father p1, mother p2, children c1 (1980) and c2 (1982)."""
    data = FamilyData()
    add_person(data, "p1", "male", "1950-03-01")
    add_person(data, "p2", "female", "1952-07-12")
    add_person(data, "c1", "male", "1980-01-01")
    add_person(data, "c2", "female", "1982-05-05")
    add_partnership(data, "u1", "p1", "p2", ("c1", "c2"))
    return data


@pytest.fixture
def three_generation_chain() -> FamilyData:
    """Great-grandparents -> grandparents -> parents -> c1 along the paternal line."""
    data = FamilyData()
    add_person(data, "gg1", "male", "1890-01-01")
    add_person(data, "gg2", "female", "1892-01-01")
    add_person(data, "g1", "male", "1920-01-01")
    add_person(data, "g2", "female", "1922-01-01")
    add_person(data, "p1", "male", "1950-01-01")
    add_person(data, "p2", "female", "1952-01-01")
    add_person(data, "c1", "male", "1980-01-01")
    add_partnership(data, "u_gg", "gg1", "gg2", ("g1",))
    add_partnership(data, "u_g", "g1", "g2", ("p1",))
    add_partnership(data, "u_p", "p1", "p2", ("c1",))
    return data


@pytest.fixture
def three_married_children() -> FamilyData:
    """A couple with three married children (a, b, c), each with children of their own."""
    data = FamilyData()
    add_person(data, "p1", "male", "1920-01-01")
    add_person(data, "p2", "female", "1922-01-01")
    add_person(data, "a", "male", "1950-01-01")
    add_person(data, "b", "female", "1952-01-01")
    add_person(data, "c", "male", "1954-01-01")
    add_person(data, "a_sp", "female", "1951-01-01")
    add_person(data, "b_sp", "male", "1950-06-01")
    add_person(data, "c_sp", "female", "1955-01-01")
    add_person(data, "a1", "male", "1975-01-01")
    add_person(data, "b1", "female", "1977-01-01")
    add_person(data, "c1", "male", "1980-01-01")
    add_person(data, "c2", "female", "1982-01-01")
    add_partnership(data, "u_p", "p1", "p2", ("a", "b", "c"))
    add_partnership(data, "u_a", "a", "a_sp", ("a1",))
    add_partnership(data, "u_b", "b_sp", "b", ("b1",))
    add_partnership(data, "u_c", "c", "c_sp", ("c1", "c2"))
    return data


@pytest.fixture
def extended_family() -> FamilyData:
    """Focus f with a sibling, parents, grandparents, an aunt and a cousin."""
    data = FamilyData()
    add_person(data, "gp1", "male", "1920-01-01")
    add_person(data, "gp2", "female", "1922-01-01")
    add_person(data, "father", "male", "1950-01-01")
    add_person(data, "aunt", "female", "1953-01-01")
    add_person(data, "aunt_sp", "male", "1952-01-01")
    add_person(data, "cousin", "female", "1978-01-01")
    add_person(data, "mother", "female", "1951-01-01")
    add_person(data, "f", "male", "1980-01-01")
    add_person(data, "sib", "female", "1982-01-01")
    add_partnership(data, "u_gp", "gp1", "gp2", ("father", "aunt"))
    add_partnership(data, "u_aunt", "aunt_sp", "aunt", ("cousin",))
    add_partnership(data, "u_par", "father", "mother", ("f", "sib"))
    return data


@pytest.fixture
def multi_partner() -> FamilyData:
    """m was married to w1 (divorced, child k1) and is married to w2 (child k2)."""
    data = FamilyData()
    add_person(data, "m", "male", "1940-01-01")
    add_person(data, "w1", "female", "1942-01-01")
    add_person(data, "w2", "female", "1948-01-01")
    add_person(data, "k1", "male", "1968-01-01")
    add_person(data, "k2", "female", "1982-01-01")
    add_partnership(data, "pw1", "m", "w1", ("k1",), status="divorced", start_date="1965-06-01")
    add_partnership(data, "pw2", "m", "w2", ("k2",), start_date="1980-06-01")
    return data
