"""Stage 3: assign integer generations relative to the focus person."""

import logging
from collections import deque

from stemma.graph import build_union_graph, find_descent_cycle
from stemma.layout_types import GenerationalModel, GenerationBand, LayoutModel

logger = logging.getLogger(__name__)


def _unions_by_person(model: LayoutModel) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    for union_id, union in model.unions.items():
        for partner_id in union.partners:
            result.setdefault(partner_id, []).append(union_id)
    return result


def _find_anchor(model: LayoutModel, person_gen: dict[str, int]) -> tuple[str, int] | None:
    """
    Find an unplaced person with a placed relative in the raw family data.

    A placed parent puts the person one generation below it, a placed
    sibling (any shared parent) on the same generation, a placed child one
    above it. Persons are tried in model order, so the choice is stable.
    """
    children_of: dict[str, list[str]] = {}
    for person_id, person in model.persons.items():
        for parent_id in person.parent_ids:
            children_of.setdefault(parent_id, []).append(person_id)

    for person_id, person in model.persons.items():
        if person_id in person_gen:
            continue
        for parent_id in person.parent_ids:
            if parent_id in person_gen:
                return person_id, person_gen[parent_id] + 1
        for parent_id in person.parent_ids:
            for sibling_id in children_of.get(parent_id, []):
                if sibling_id in person_gen:
                    return person_id, person_gen[sibling_id]
        for child_id in person.child_ids:
            if child_id in person_gen:
                return person_id, person_gen[child_id] - 1
    return None


def assign_generations(model: LayoutModel, focus_person_id: str) -> GenerationalModel:
    """
    Assign generation 0 to the focus, -1 to its parents, +1 to its children.

    A breadth-first walk visits every union a person belongs to (partners
    share the union's generation, children are one deeper, the parent union
    one shallower). A fixpoint pass then fills anything the walk could not
    reach through its first visit. The first assignment wins, so malformed
    cyclic data cannot loop.

    Groups the focus cannot reach through unions (a sibling whose parents
    are not selected, an aunt without the grandparents) are seeded from a
    selected parent, sibling or child and walked the same way. Only a group
    with no such relative at all starts at 0.
    """
    person_gen: dict[str, int] = {}
    union_gen: dict[str, int] = {}
    person_unions = _unions_by_person(model)

    def set_union(union_id: str, gen: int, queue: deque) -> None:
        if union_id in union_gen:
            return
        union_gen[union_id] = gen
        union = model.unions[union_id]
        for partner_id in union.partners:
            queue.append((partner_id, gen))
        for child_id in union.child_ids:
            queue.append((child_id, gen + 1))

    def spread(seed_id: str, seed_gen: int) -> None:
        queue: deque = deque([(seed_id, seed_gen)])
        while queue:
            person_id, gen = queue.popleft()
            if person_id in person_gen or person_id not in model.persons:
                continue
            person_gen[person_id] = gen
            for union_id in person_unions.get(person_id, []):
                set_union(union_id, gen, queue)
            parent_union_id = model.child_to_parent_union.get(person_id)
            if parent_union_id is not None:
                set_union(parent_union_id, gen - 1, queue)
        fill()

    def fill() -> None:
        # Fixpoint over edges in both directions
        changed = True
        while changed:
            changed = False
            for edge in model.edges:
                parent_gen = union_gen.get(edge.parent_union_id)
                child_gen = person_gen.get(edge.child_person_id)
                if parent_gen is not None and child_gen is None and edge.child_person_id in model.persons:
                    person_gen[edge.child_person_id] = parent_gen + 1
                    changed = True
                elif parent_gen is None and child_gen is not None:
                    union_gen[edge.parent_union_id] = child_gen - 1
                    changed = True
            for union_id, union in model.unions.items():
                gen = union_gen.get(union_id)
                if gen is None:
                    known = [person_gen[p] for p in union.partners if p in person_gen]
                    if not known:
                        known = [person_gen[c] - 1 for c in union.child_ids if c in person_gen]
                    if known:
                        union_gen[union_id] = known[0]
                        changed = True
                    continue
                for partner_id in union.partners:
                    if partner_id not in person_gen and partner_id in model.persons:
                        person_gen[partner_id] = gen
                        changed = True
                for child_id in union.child_ids:
                    if child_id not in person_gen and child_id in model.persons:
                        person_gen[child_id] = gen + 1
                        changed = True

    if focus_person_id in model.persons:
        spread(focus_person_id, 0)

    anchor = _find_anchor(model, person_gen)
    while anchor is not None:
        person_id, gen = anchor
        logger.debug("Person %s unreachable from focus, anchored at generation %d", person_id, gen)
        spread(person_id, gen)
        anchor = _find_anchor(model, person_gen)

    for person_id in model.persons:
        if person_id not in person_gen:
            logger.debug("Person %s has no placed relative, using generation 0", person_id)
            spread(person_id, 0)
    for union_id, union in model.unions.items():
        if union_id not in union_gen:
            union_gen[union_id] = person_gen.get(union.partner_a, 0)

    gen_bands: dict[int, GenerationBand] = {}
    for person_id in model.persons:
        gen_bands.setdefault(person_gen[person_id], GenerationBand()).persons.append(person_id)
    for union_id in model.unions:
        gen_bands.setdefault(union_gen[union_id], GenerationBand()).unions.append(union_id)
    gen_bands = dict(sorted(gen_bands.items()))

    gens = list(gen_bands) or [0]
    gen_model = GenerationalModel(
        model=model,
        person_gen=person_gen,
        union_gen=union_gen,
        gen_bands=gen_bands,
        min_gen=min(gens),
        max_gen=max(gens),
    )
    logger.debug("Generations %d..%d", gen_model.min_gen, gen_model.max_gen)
    return gen_model


def validate_generations(gen_model: GenerationalModel) -> list[str]:
    """
    Check the generation invariants.

    Returns a list of error messages; never raises. Callers decide whether a
    non-empty list should stop the layout.
    """
    errors: list[str] = []
    model = gen_model.model

    for person_id in model.persons:
        if person_id not in gen_model.person_gen:
            errors.append(f"Person {person_id} has no generation")
    for union_id in model.unions:
        if union_id not in gen_model.union_gen:
            errors.append(f"Union {union_id} has no generation")

    for edge in model.edges:
        parent_gen = gen_model.union_gen.get(edge.parent_union_id)
        child_gen = gen_model.person_gen.get(edge.child_person_id)
        if parent_gen is None or child_gen is None:
            continue
        if child_gen != parent_gen + 1:
            errors.append(
                f"Generation mismatch: union {edge.parent_union_id} (gen {parent_gen}) -> "
                f"child {edge.child_person_id} (gen {child_gen}), expected gen {parent_gen + 1}"
            )

    for union_id, union in model.unions.items():
        gen = gen_model.union_gen.get(union_id)
        gen_a = gen_model.person_gen.get(union.partner_a)
        if union.partner_b is not None:
            gen_b = gen_model.person_gen.get(union.partner_b)
            if gen_a is not None and gen_b is not None and gen_a != gen_b:
                errors.append(
                    f"Partners in union {union_id} have different generations: "
                    f"{union.partner_a} (gen {gen_a}), {union.partner_b} (gen {gen_b})"
                )
        if gen is not None and gen_a is not None and gen != gen_a:
            errors.append(
                f"Union {union_id} (gen {gen}) does not match partner {union.partner_a} (gen {gen_a})"
            )

    cycle = find_descent_cycle(
        build_union_graph(model), "edge_type", ("spouse_to_family", "family_to_child")
    )
    if cycle is not None:
        errors.append(f"Cycle detected in parent-child relationships: {cycle}")

    for message in errors:
        logger.warning(message)
    return errors
