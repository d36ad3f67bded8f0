"""Stage 2: turn selected partnerships into atomic union nodes."""

import logging

from stemma.config import DEFAULT_DISPLAY_POLICY, DisplayPolicy
from stemma.layout_types import (
    GenerationalModel,
    GraphSelection,
    LayoutModel,
    ParentChildEdge,
    PartnerChain,
    UnionNode,
)
from stemma.models import FamilyData, Partnership

logger = logging.getLogger(__name__)


def order_partners(data: FamilyData, person1_id: str, person2_id: str) -> tuple[str, str]:
    """Male first when genders differ, otherwise by ID."""
    p1 = data.persons.get(person1_id)
    p2 = data.persons.get(person2_id)
    g1 = p1.gender if p1 else None
    g2 = p2.gender if p2 else None

    if g1 == "male" and g2 == "female":
        return person1_id, person2_id
    if g1 == "female" and g2 == "male":
        return person2_id, person1_id
    return (person1_id, person2_id) if person1_id < person2_id else (person2_id, person1_id)


def union_id_for(partner_a: str, partner_b: str | None) -> str:
    if partner_b is None:
        return f"union_{partner_a}_single"
    first, second = sorted((partner_a, partner_b))
    return f"union_{first}_{second}"


def chain_union_id(shared_person_id: str, partnership_id: str) -> str:
    return f"chain_{shared_person_id}_{partnership_id}"


def sort_children(data: FamilyData, child_ids: list[str]) -> list[str]:
    """Birth date first (unknown dates sort first), then ID."""

    def key(child_id: str) -> tuple[str, str]:
        person = data.persons.get(child_id)
        return ((person.birth_date or "") if person else "", child_id)

    return sorted(dict.fromkeys(child_ids), key=key)


def _partnership_sort_key(partnership: Partnership, focus_parent_ids: set[str]) -> tuple:
    is_bio_parents = (
        partnership.person1_id in focus_parent_ids and partnership.person2_id in focus_parent_ids
    )
    # Newest start date first: invert characters so ascending order sorts descending
    start = partnership.start_date or ""
    inverted_start = tuple(-ord(ch) for ch in start) + (1,)
    return (
        0 if is_bio_parents else 1,
        0 if partnership.is_primary else 1,
        1 if partnership.is_terminated else 0,
        inverted_start,
        partnership.id,
    )


def build_layout_model(
    data: FamilyData,
    selection: GraphSelection,
    focus_person_id: str,
    display_policy: DisplayPolicy = DEFAULT_DISPLAY_POLICY,
) -> LayoutModel:
    """
    Build the union graph for a selection.

    Partnerships are converted in priority order (the focus's biological
    parents, primary flag, active before terminated, newest start date, ID).
    A partnership whose partners both already sit in a union only adds its
    children to the union of `person1`. Every remaining person becomes a
    single-person union.

    Args:
        data: Full family data
        selection: Output of select_subgraph
        focus_person_id: Focus person
        display_policy: Expanded mode adds partner chains; selected secondary
            partners are linked next to their shared partner in any mode

    Returns:
        The layout model. Union IDs and child orders depend only on the input.
    """
    persons = {pid: data.persons[pid] for pid in sorted(selection.persons) if pid in data.persons}
    unions: dict[str, UnionNode] = {}
    edges: list[ParentChildEdge] = []
    person_to_union: dict[str, str] = {}
    child_to_parent_union: dict[str, str] = {}
    assigned: set[str] = set()

    focus = data.persons.get(focus_person_id)
    focus_parent_ids = set(focus.parent_ids) if focus else set()

    partnerships = [
        data.partnerships[pid] for pid in selection.partnerships if pid in data.partnerships
    ]
    partnerships.sort(key=lambda p: _partnership_sort_key(p, focus_parent_ids))

    for partnership in partnerships:
        if partnership.person1_id not in persons or partnership.person2_id not in persons:
            continue

        if partnership.person1_id in assigned and partnership.person2_id in assigned:
            existing = person_to_union.get(partnership.person1_id)
            if existing is not None:
                _merge_children(
                    data, unions[existing], partnership, persons, child_to_parent_union, edges
                )
            continue

        partner_a, partner_b = order_partners(data, partnership.person1_id, partnership.person2_id)
        union = UnionNode(
            id=union_id_for(partner_a, partner_b),
            partner_a=partner_a,
            partner_b=partner_b,
            partnership_id=partnership.id,
            child_ids=sort_children(data, [c for c in partnership.child_ids if c in persons]),
        )
        unions[union.id] = union
        # The first (highest priority) union is a person's home union
        person_to_union.setdefault(partner_a, union.id)
        person_to_union.setdefault(partner_b, union.id)
        assigned.update((partner_a, partner_b))

        for child_id in union.child_ids:
            child_to_parent_union[child_id] = union.id
            edges.append(ParentChildEdge(union.id, child_id))

    for person_id, person in persons.items():
        if person_id in assigned:
            continue

        if person.partnerships:
            child_ids = [
                c
                for c in person.child_ids
                if c in persons
                and any(
                    c in p.child_ids and p.involves(person_id) for p in data.partnerships.values()
                )
            ]
        else:
            # Single parent without any partnership record
            child_ids = [
                c for c in person.child_ids if c in persons and person_id in persons[c].parent_ids
            ]

        union = UnionNode(
            id=union_id_for(person_id, None),
            partner_a=person_id,
            partner_b=None,
            partnership_id=None,
            child_ids=sort_children(data, child_ids),
        )
        unions[union.id] = union
        person_to_union[person_id] = union.id
        assigned.add(person_id)

        for child_id in union.child_ids:
            if child_id not in child_to_parent_union:
                child_to_parent_union[child_id] = union.id
                edges.append(ParentChildEdge(union.id, child_id))

    model = LayoutModel(
        persons=persons,
        unions=unions,
        edges=edges,
        person_to_union=person_to_union,
        child_to_parent_union=child_to_parent_union,
    )

    if display_policy.mode == "expanded" and display_policy.expanded_person_ids:
        expand_partner_chains(model, data, selection, display_policy.expanded_person_ids)
    link_secondary_partners(model)

    logger.debug(
        "Built %d unions, %d edges, %d partner chains",
        len(model.unions),
        len(model.edges),
        len(model.partner_chains),
    )
    return model


def _merge_children(
    data: FamilyData,
    union: UnionNode,
    partnership: Partnership,
    persons: dict,
    child_to_parent_union: dict[str, str],
    edges: list[ParentChildEdge],
) -> None:
    for child_id in sort_children(data, [c for c in partnership.child_ids if c in persons]):
        if child_id in union.child_ids:
            continue
        union.child_ids.append(child_id)
        if child_id not in child_to_parent_union:
            child_to_parent_union[child_id] = union.id
            edges.append(ParentChildEdge(union.id, child_id))
    union.child_ids = sort_children(data, union.child_ids)


def _claimed_unions(model: LayoutModel) -> dict[str, str]:
    """Map every union already in a chain to that chain's primary union."""
    claimed: dict[str, str] = {}
    for chain in model.partner_chains.values():
        for union_id in chain.union_ids:
            claimed.setdefault(union_id, chain.union_ids[0])
    return claimed


def _add_chain(
    model: LayoutModel, shared_id: str, chain_ids: list[str], claimed: dict[str, str]
) -> None:
    for union_id in chain_ids:
        claimed.setdefault(union_id, chain_ids[0])
    model.partner_chains[shared_id] = PartnerChain(shared_id, chain_ids)


def expand_partner_chains(
    model: LayoutModel,
    data: FamilyData,
    selection: GraphSelection,
    expanded_person_ids: frozenset[str] | set[str],
) -> None:
    """
    Give every expanded person with several partnerships a partner chain.

    Partnerships that already produced a union are reused. Partnerships that
    were folded into the primary union get a `chain_...` union which takes
    their children over from the primary union. A union belongs to at most one
    chain, primary unions included: a person whose primary union already
    serves as another chain's secondary union gets no chain. Chains of both
    partners of one primary union are merged.
    """
    partnership_to_union = {
        u.partnership_id: uid for uid, u in model.unions.items() if u.partnership_id
    }
    claimed = _claimed_unions(model)

    for shared_id in sorted(expanded_person_ids):
        person = data.persons.get(shared_id)
        primary_id = model.person_to_union.get(shared_id)
        if person is None or primary_id is None:
            continue
        if claimed.get(primary_id, primary_id) != primary_id:
            logger.debug("Union %s already belongs to a chain, %s stays unchained", primary_id, shared_id)
            continue
        primary = model.unions[primary_id]

        own = []
        for partnership_id in person.partnerships:
            partnership = data.partnerships.get(partnership_id)
            if (
                partnership is None
                or partnership_id not in selection.partnerships
                or partnership.person1_id not in model.persons
                or partnership.person2_id not in model.persons
            ):
                continue
            own.append(partnership)
        if len(own) <= 1:
            continue

        chain_ids = [primary_id]
        for partnership in own:
            if partnership.id == primary.partnership_id:
                continue
            existing = partnership_to_union.get(partnership.id)
            if existing is not None:
                if existing != primary_id and existing not in claimed and existing not in chain_ids:
                    chain_ids.append(existing)
                continue

            partner_id = partnership.partner_of(shared_id)
            partner_a, partner_b = order_partners(data, shared_id, partner_id)
            child_ids = sort_children(
                data, [c for c in partnership.child_ids if c in model.persons]
            )
            chain = UnionNode(
                id=chain_union_id(shared_id, partnership.id),
                partner_a=partner_a,
                partner_b=partner_b,
                partnership_id=partnership.id,
                child_ids=child_ids,
            )
            model.unions[chain.id] = chain
            partnership_to_union[partnership.id] = chain.id
            chain_ids.append(chain.id)

            if model.person_to_union.get(partner_id) == primary_id:
                model.person_to_union[partner_id] = chain.id

            for child_id in child_ids:
                # Folded children were merged into person1's union, usually the primary one
                old_parent_id = model.child_to_parent_union.get(child_id, primary_id)
                old_parent = model.unions.get(old_parent_id)
                if old_parent is not None and child_id in old_parent.child_ids:
                    old_parent.child_ids.remove(child_id)
                model.child_to_parent_union[child_id] = chain.id
                model.edges[:] = [
                    e
                    for e in model.edges
                    if not (e.parent_union_id == old_parent_id and e.child_person_id == child_id)
                ]
                model.edges.append(ParentChildEdge(chain.id, child_id))

        if len(chain_ids) > 1:
            _add_chain(model, shared_id, chain_ids, claimed)

    merge_overlapping_chains(model)


def link_secondary_partners(model: LayoutModel) -> None:
    """
    Chain the separate unions of a person with several selected partners.

    Covers collapsed mode and persons outside the expanded set. Only unions
    whose other partner lives in them are linked, so the partner's card is
    drawn next to the shared person (on the side that keeps partner_a left).
    Existing unions are reused; folded partnerships stay folded.
    """
    claimed = _claimed_unions(model)
    unions_of: dict[str, list[str]] = {}
    for union_id in sorted(model.unions):
        union = model.unions[union_id]
        if union.partner_b is None:
            continue
        for partner_id in union.partners:
            unions_of.setdefault(partner_id, []).append(union_id)

    for shared_id in sorted(unions_of):
        primary_id = model.person_to_union.get(shared_id)
        if shared_id in model.partner_chains or primary_id is None:
            continue
        if claimed.get(primary_id, primary_id) != primary_id:
            continue

        chain_ids = [primary_id]
        for union_id in unions_of[shared_id]:
            if union_id == primary_id or union_id in claimed:
                continue
            union = model.unions[union_id]
            partner_id = union.partner_b if union.partner_a == shared_id else union.partner_a
            if model.person_to_union.get(partner_id) == union_id:
                chain_ids.append(union_id)

        if len(chain_ids) > 1:
            _add_chain(model, shared_id, chain_ids, claimed)

    merge_overlapping_chains(model)


def merge_overlapping_chains(model: LayoutModel) -> None:
    """Fold partner_b's chain into partner_a's when both share a primary union."""
    by_primary: dict[str, list[str]] = {}
    for person_id in sorted(model.partner_chains):
        primary_id = model.person_to_union.get(person_id)
        if primary_id is not None:
            by_primary.setdefault(primary_id, []).append(person_id)

    for primary_id, person_ids in by_primary.items():
        if len(person_ids) <= 1:
            continue
        primary = model.unions.get(primary_id)
        if primary is None or primary.partner_b is None:
            continue
        chain_a = model.partner_chains.get(primary.partner_a)
        chain_b = model.partner_chains.get(primary.partner_b)
        if chain_a is None or chain_b is None:
            continue
        chain_a.union_ids = list(dict.fromkeys(chain_a.union_ids + chain_b.union_ids))
        del model.partner_chains[primary.partner_b]


def get_child_unions(
    parent_union_id: str, model: LayoutModel, gen_model: GenerationalModel
) -> list[str]:
    """Child unions one level down, deduplicated, in child order."""
    union = model.unions.get(parent_union_id)
    if union is None:
        return []
    parent_gen = gen_model.union_gen.get(parent_union_id, 0)

    result: list[str] = []
    for child_id in union.child_ids:
        child_union_id = model.person_to_union.get(child_id)
        if child_union_id is None or child_union_id in result:
            continue
        child_gen = gen_model.union_gen.get(child_union_id)
        if child_gen is None or child_gen <= parent_gen:
            continue
        result.append(child_union_id)
    return result
