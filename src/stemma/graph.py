"""NetworkX views of family data and layout models."""

import networkx as nx

from stemma.layout_types import LayoutModel
from stemma.models import FamilyData


def build_family_graph(data: FamilyData) -> nx.DiGraph:
    """
    Build a directed graph of the raw family data.

    Person nodes carry their name and dates. Edges are PARENT_OF (parent to
    child, from partnership child lists and person parent lists) and
    SPOUSE_OF (person1 to person2 of each partnership).
    """
    G = nx.DiGraph()

    # Note: use 'person_name' instead of 'name' to avoid conflict with pydot
    for person_id, person in data.persons.items():
        G.add_node(
            person_id,
            person_name=person.name,
            gender=person.gender,
            birth_date=person.birth_date,
            death_date=person.death_date,
        )

    for partnership in data.partnerships.values():
        G.add_edge(
            partnership.person1_id,
            partnership.person2_id,
            relationship_type="SPOUSE_OF",
            partnership_id=partnership.id,
        )
        for child_id in partnership.child_ids:
            G.add_edge(partnership.person1_id, child_id, relationship_type="PARENT_OF")
            G.add_edge(partnership.person2_id, child_id, relationship_type="PARENT_OF")

    for person_id, person in data.persons.items():
        for parent_id in person.parent_ids:
            if not G.has_edge(parent_id, person_id):
                G.add_edge(parent_id, person_id, relationship_type="PARENT_OF")

    return G


def build_union_graph(model: LayoutModel, union_gen: dict[str, int] | None = None) -> nx.DiGraph:
    """
    Build the union-node graph of a layout model.

    Union nodes ("family" nodes) connect partners to their children, so
    spouses sit on one rank and siblings hang from one node:

    - person -> union edges are "spouse_to_family"
    - union -> child edges are "family_to_child"

    Args:
        model: Layout model from build_layout_model
        union_gen: Optional generation per union, stored on union nodes

    Returns:
        A graph with `node_type` "person" or "family" on every node
    """
    H = nx.DiGraph()

    for person_id, person in model.persons.items():
        H.add_node(
            person_id,
            node_type="person",
            person_name=person.name,
            gender=person.gender,
            birth_date=person.birth_date,
            death_date=person.death_date,
        )

    for union_id, union in model.unions.items():
        attrs = {"node_type": "family", "spouses": tuple(union.partners)}
        if union_gen is not None and union_id in union_gen:
            attrs["generation"] = union_gen[union_id]
        H.add_node(union_id, **attrs)
        for partner_id in union.partners:
            H.add_edge(partner_id, union_id, edge_type="spouse_to_family")

    for edge in model.edges:
        H.add_edge(edge.parent_union_id, edge.child_person_id, edge_type="family_to_child")

    return H


def find_descent_cycle(G: nx.DiGraph, edge_attr: str, edge_values: tuple[str, ...]) -> list | None:
    """Return the nodes of one descent cycle among edges with the given type, if any."""
    descent_edges = [(u, v) for u, v, d in G.edges(data=True) if d.get(edge_attr) in edge_values]
    descent_graph = nx.DiGraph(descent_edges)

    try:
        cycle = nx.find_cycle(descent_graph, orientation="original")
    except nx.NetworkXNoCycle:
        return None
    return [edge[0] for edge in cycle]
