"""Stage 1: choose the persons and partnerships visible around a focus person."""

import logging
from dataclasses import dataclass, field

from stemma.config import DisplayPolicy
from stemma.layout_types import GraphSelection
from stemma.models import FamilyData, Partnership, Person

logger = logging.getLogger(__name__)


@dataclass
class _Walk:
    """Mutable state shared by the recursive walks of one selection."""

    data: FamilyData
    claimed_children: set[str]
    persons: set[str] = field(default_factory=set)
    partnerships: set[str] = field(default_factory=set)
    processed_partnerships: set[str] = field(default_factory=set)


def select_subgraph(
    data: FamilyData,
    focus_person_id: str,
    ancestor_depth: int,
    descendant_depth: int,
    include_spouse_ancestors: bool = False,
    include_parent_siblings: bool = False,
    include_parent_sibling_descendants: bool = False,
) -> GraphSelection:
    """
    Walk outward from the focus person and collect the visible subgraph.

    Children count as "real" only when some partnership lists them in its
    `child_ids`; persons referenced only through `child_ids` of a person are
    skipped.

    Args:
        data: Full family data
        focus_person_id: Person the view is centered on
        ancestor_depth: Generations to climb (1 = parents, 2 = grandparents)
        descendant_depth: Generations to descend
        include_spouse_ancestors: Also climb the ancestors of the focus's partners
        include_parent_siblings: Add aunts and uncles (needs ancestor_depth >= 1)
        include_parent_sibling_descendants: Add cousins and their descendants

    Returns:
        The selection, with the depths actually reached. Empty when the focus
        person does not exist.
    """
    focus = data.persons.get(focus_person_id)
    if focus is None:
        logger.debug("Focus person %s not found, returning empty selection", focus_person_id)
        return GraphSelection(persons=set(), partnerships=set(), focus_person_id=focus_person_id)

    claimed = {child_id for p in data.partnerships.values() for child_id in p.child_ids}
    walk = _Walk(data=data, claimed_children=claimed)

    ancestor_reached = 0
    descendant_reached = 0

    # Focus and partners
    walk.persons.add(focus_person_id)
    _add_partners(walk, focus_person_id)

    # Siblings, their partners and descendants. The other parent of a
    # half-sibling is not added.
    for sibling_id in _sibling_ids(walk, focus_person_id):
        walk.persons.add(sibling_id)
        _add_partners(walk, sibling_id)
        if descendant_depth > 0:
            depth = _add_descendants(walk, sibling_id, descendant_depth)
            descendant_reached = max(descendant_reached, depth)

    if descendant_depth > 0:
        depth = _add_descendants(walk, focus_person_id, descendant_depth)
        descendant_reached = max(descendant_reached, depth)

    if ancestor_depth > 0:
        depth = _add_ancestors(walk, focus_person_id, ancestor_depth)
        ancestor_reached = max(ancestor_reached, depth)

        if include_spouse_ancestors:
            for partnership_id in focus.partnerships:
                partnership = data.partnerships.get(partnership_id)
                if partnership is None:
                    continue
                spouse_id = partnership.partner_of(focus_person_id)
                if spouse_id in walk.persons:
                    depth = _add_ancestors(walk, spouse_id, ancestor_depth)
                    ancestor_reached = max(ancestor_reached, depth)

    # Without the grandparents they are placed as siblings of the parent
    if include_parent_siblings and ancestor_depth >= 1:
        for parent_id in focus.parent_ids:
            for aunt_id in _sibling_ids(walk, parent_id):
                walk.persons.add(aunt_id)
                _add_partners(walk, aunt_id)
                if include_parent_sibling_descendants:
                    _add_cousins(walk, aunt_id, descendant_depth)

    _collect_partnerships(walk)

    selection = GraphSelection(
        persons=walk.persons,
        partnerships=walk.partnerships,
        focus_person_id=focus_person_id,
        max_ancestor_gen=ancestor_reached,
        max_descendant_gen=descendant_reached,
    )
    logger.debug(
        "Selected %d persons and %d partnerships around %s (ancestors %d, descendants %d)",
        len(selection.persons),
        len(selection.partnerships),
        focus_person_id,
        ancestor_reached,
        descendant_reached,
    )
    return selection


def _add_partners(walk: _Walk, person_id: str) -> None:
    """Add every partnership of a person together with both partners."""
    person = walk.data.persons.get(person_id)
    if person is None:
        return
    for partnership_id in person.partnerships:
        partnership = walk.data.partnerships.get(partnership_id)
        if partnership is None:
            continue
        walk.persons.add(partnership.person1_id)
        walk.persons.add(partnership.person2_id)
        walk.partnerships.add(partnership_id)


def _add_descendants(walk: _Walk, person_id: str, max_depth: int, current_depth: int = 0) -> int:
    """Add claimed children (and their partners) recursively. Returns the depth reached."""
    if max_depth <= 0:
        return current_depth
    person = walk.data.persons.get(person_id)
    if person is None:
        return current_depth

    reached = current_depth
    for child_id in person.child_ids:
        # Already selected persons are not walked again, which also stops cycles
        if child_id in walk.persons or child_id not in walk.claimed_children:
            continue
        walk.persons.add(child_id)
        _add_partners(walk, child_id)
        depth = _add_descendants(walk, child_id, max_depth - 1, current_depth + 1)
        reached = max(reached, depth)
    return reached


def find_parent_partnership(data: FamilyData, child_id: str) -> Partnership | None:
    """The partnership that claims the child and contains one of its listed parents."""
    child = data.persons.get(child_id)
    if child is None:
        return None
    for partnership in data.partnerships.values():
        if child_id in partnership.child_ids and (
            partnership.person1_id in child.parent_ids or partnership.person2_id in child.parent_ids
        ):
            return partnership
    return None


def _add_ancestors(walk: _Walk, child_id: str, max_depth: int, current_depth: int = 0) -> int:
    """Climb ancestors, both parents of a partnership as one unit. Returns the depth reached."""
    if max_depth <= 0:
        return current_depth
    child = walk.data.persons.get(child_id)
    if child is None or not child.parent_ids:
        return current_depth

    parent_partnership = find_parent_partnership(walk.data, child_id)

    if parent_partnership is not None:
        if parent_partnership.id in walk.processed_partnerships:
            return current_depth
        walk.processed_partnerships.add(parent_partnership.id)
        walk.partnerships.add(parent_partnership.id)
        walk.persons.add(parent_partnership.person1_id)
        walk.persons.add(parent_partnership.person2_id)

        depth1 = _add_ancestors(walk, parent_partnership.person1_id, max_depth - 1, current_depth + 1)
        depth2 = _add_ancestors(walk, parent_partnership.person2_id, max_depth - 1, current_depth + 1)
        return max(depth1, depth2)

    # No shared partnership on record: add the parents one by one with their partners
    reached = current_depth
    for parent_id in child.parent_ids:
        if parent_id in walk.persons:
            continue
        walk.persons.add(parent_id)
        _add_partners(walk, parent_id)
        depth = _add_ancestors(walk, parent_id, max_depth - 1, current_depth + 1)
        reached = max(reached, depth)
    return reached


def _sibling_ids(walk: _Walk, person_id: str) -> list[str]:
    """Claimed children of the person's parents, excluding the person."""
    person = walk.data.persons.get(person_id)
    if person is None:
        return []

    siblings: list[str] = []
    for parent_id in person.parent_ids:
        parent = walk.data.persons.get(parent_id)
        if parent is None:
            continue
        for child_id in parent.child_ids:
            if child_id == person_id or child_id in siblings:
                continue
            if child_id in walk.claimed_children and child_id in walk.data.persons:
                siblings.append(child_id)
    return siblings


def _add_cousins(walk: _Walk, aunt_id: str, descendant_depth: int) -> None:
    aunt = walk.data.persons.get(aunt_id)
    if aunt is None:
        return
    for cousin_id in aunt.child_ids:
        if cousin_id not in walk.claimed_children or cousin_id in walk.persons:
            continue
        walk.persons.add(cousin_id)
        _add_partners(walk, cousin_id)
        if descendant_depth > 0:
            _add_descendants(walk, cousin_id, descendant_depth)


def _collect_partnerships(walk: _Walk) -> None:
    """Keep partnerships between selected persons that have a selected child or were already picked."""
    for partnership_id, partnership in walk.data.partnerships.items():
        if partnership.person1_id not in walk.persons or partnership.person2_id not in walk.persons:
            continue
        has_selected_child = any(child_id in walk.persons for child_id in partnership.child_ids)
        if has_selected_child or partnership_id in walk.partnerships:
            walk.partnerships.add(partnership_id)


# ============================================================================
# Display expansion (partner chains)
# ============================================================================


def _selected_partner_ids(data: FamilyData, person: Person, selection: GraphSelection) -> list[str]:
    partners: list[str] = []
    for partnership_id in person.partnerships:
        if partnership_id not in selection.partnerships:
            continue
        partnership = data.partnerships.get(partnership_id)
        if partnership is None:
            continue
        partner_id = partnership.partner_of(person.id)
        if partner_id in selection.persons:
            partners.append(partner_id)
    return partners


def find_auto_expand_person_ids(
    data: FamilyData, focus_person_id: str, selection: GraphSelection
) -> set[str]:
    """
    Persons near the focus that have more than one partnership.

    The scope is the focus family cluster: the focus's parents with their
    partners and siblings (and the siblings' partners), the focus with its
    partners and siblings (and their partners), and every selected descendant
    of that generation with its partners.
    """
    focus = data.persons.get(focus_person_id)
    if focus is None:
        return set()

    scope: set[str] = {focus_person_id}
    scope.update(_selected_partner_ids(data, focus, selection))

    # Focus generation: children of the parents' selected partnerships
    generation_zero: list[str] = [focus_person_id]
    for parent_id in focus.parent_ids:
        parent = data.persons.get(parent_id)
        if parent is None:
            continue
        for partnership_id in parent.partnerships:
            partnership = data.partnerships.get(partnership_id)
            if partnership is None or partnership_id not in selection.partnerships:
                continue
            for sibling_id in partnership.child_ids:
                sibling = data.persons.get(sibling_id)
                if sibling is None or sibling_id not in selection.persons:
                    continue
                scope.add(sibling_id)
                generation_zero.append(sibling_id)
                scope.update(_selected_partner_ids(data, sibling, selection))

    # Parents' generation: parents, their partners, their siblings and partners
    for parent_id in focus.parent_ids:
        parent = data.persons.get(parent_id)
        if parent is None or parent_id not in selection.persons:
            continue
        scope.add(parent_id)
        scope.update(_selected_partner_ids(data, parent, selection))
        for grandparent_id in parent.parent_ids:
            grandparent = data.persons.get(grandparent_id)
            if grandparent is None:
                continue
            for aunt_id in grandparent.child_ids:
                aunt = data.persons.get(aunt_id)
                if aunt is None or aunt_id not in selection.persons:
                    continue
                scope.add(aunt_id)
                scope.update(_selected_partner_ids(data, aunt, selection))

    # Descendants of the focus generation with their partners
    queue = list(generation_zero)
    visited: set[str] = set()
    while queue:
        person_id = queue.pop(0)
        if person_id in visited:
            continue
        visited.add(person_id)
        person = data.persons.get(person_id)
        if person is None:
            continue
        for partnership_id in person.partnerships:
            partnership = data.partnerships.get(partnership_id)
            if partnership is None or partnership_id not in selection.partnerships:
                continue
            partner_id = partnership.partner_of(person_id)
            if partner_id in selection.persons:
                scope.add(partner_id)
            for child_id in partnership.child_ids:
                if child_id in selection.persons and child_id not in visited:
                    scope.add(child_id)
                    queue.append(child_id)

    return {
        person_id
        for person_id in scope
        if person_id in data.persons and len(data.persons[person_id].partnerships) > 1
    }


def expand_selection_for_display(
    data: FamilyData, selection: GraphSelection, display_policy: DisplayPolicy
) -> GraphSelection:
    """Return a selection that shows every partner of each expanded person."""
    expanded = selection.copy()
    if display_policy.mode != "expanded":
        return expanded

    for person_id in sorted(display_policy.expanded_person_ids):
        person = data.persons.get(person_id)
        if person is None or person_id not in expanded.persons:
            continue
        for partnership_id in person.partnerships:
            partnership = data.partnerships.get(partnership_id)
            if partnership is None:
                continue
            expanded.persons.add(partnership.person1_id)
            expanded.persons.add(partnership.person2_id)
            expanded.partnerships.add(partnership_id)
    return expanded
