"""Intermediate and result structures passed between layout stages."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from stemma.config import LayoutConfig
from stemma.models import Person

SIDE_HUSBAND = "HUSBAND"
SIDE_WIFE = "WIFE"
SIDE_BOTH = "BOTH"


# ============================================================================
# Stage 1-3: selection, union model, generations
# ============================================================================


@dataclass
class GraphSelection:
    persons: set[str]
    partnerships: set[str]
    focus_person_id: str
    max_ancestor_gen: int = 0
    max_descendant_gen: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.persons

    def copy(self) -> "GraphSelection":
        return GraphSelection(
            persons=set(self.persons),
            partnerships=set(self.partnerships),
            focus_person_id=self.focus_person_id,
            max_ancestor_gen=self.max_ancestor_gen,
            max_descendant_gen=self.max_descendant_gen,
        )


@dataclass
class UnionNode:
    id: str
    partner_a: str
    partner_b: str | None
    partnership_id: str | None
    child_ids: list[str] = field(default_factory=list)

    @property
    def partners(self) -> list[str]:
        return [self.partner_a] if self.partner_b is None else [self.partner_a, self.partner_b]


@dataclass(frozen=True)
class ParentChildEdge:
    parent_union_id: str
    child_person_id: str


@dataclass
class PartnerChain:
    shared_person_id: str
    union_ids: list[str]  # primary union first


@dataclass
class LayoutModel:
    persons: dict[str, Person]
    unions: dict[str, UnionNode]
    edges: list[ParentChildEdge]
    person_to_union: dict[str, str]
    child_to_parent_union: dict[str, str]
    partner_chains: dict[str, PartnerChain] = field(default_factory=dict)

    def secondary_chain_unions(self) -> set[str]:
        """Chain unions that are not the shared person's primary union."""
        secondary: set[str] = set()
        for chain in self.partner_chains.values():
            primary = self.person_to_union.get(chain.shared_person_id)
            secondary.update(uid for uid in chain.union_ids if uid != primary)
        return secondary


@dataclass
class GenerationBand:
    persons: list[str] = field(default_factory=list)
    unions: list[str] = field(default_factory=list)


@dataclass
class GenerationalModel:
    model: LayoutModel
    person_gen: dict[str, int]
    union_gen: dict[str, int]
    gen_bands: dict[int, GenerationBand]
    min_gen: int
    max_gen: int


# ============================================================================
# Stage 4-6: blocks, branches, positions
# ============================================================================


@dataclass
class FamilyBlock:
    """Measurement and placement unit: one union (or one partner chain)."""

    id: str
    root_union_id: str
    union_ids: list[str]
    person_order: list[str]  # card row, left to right
    generation: int
    side: str
    husband_id: str | None = None
    wife_id: str | None = None
    child_block_ids: list[str] = field(default_factory=list)
    parent_block_id: str | None = None
    branch_id: str | None = None

    width: float = 0.0
    couple_width: float = 0.0
    children_width: float = 0.0
    envelope_width: float = 0.0
    left_extent: float = 0.0
    right_extent: float = 0.0

    x_left: float = 0.0
    x_right: float = 0.0
    x_center: float = 0.0
    husband_anchor_x: float = 0.0
    wife_anchor_x: float = 0.0
    children_center_x: float = 0.0
    couple_center_x: float = 0.0

    @property
    def is_chain(self) -> bool:
        return len(self.union_ids) > 1

    @property
    def card_left(self) -> float:
        return self.x_center - self.couple_width / 2

    @property
    def card_right(self) -> float:
        return self.x_center + self.couple_width / 2

    def person_left(self, person_id: str, config: LayoutConfig) -> float:
        index = self.person_order.index(person_id)
        return self.card_left + index * (config.card_width + config.partner_gap)

    def person_center(self, person_id: str, config: LayoutConfig) -> float:
        return self.person_left(person_id, config) + config.card_width / 2

    def set_center(self, x: float, config: LayoutConfig) -> None:
        """Move the block so its card row is centered on `x`."""
        self.x_center = x
        self.x_left = x - self.width / 2
        self.x_right = x + self.width / 2
        if self.husband_id in self.person_order:
            self.husband_anchor_x = self.person_center(self.husband_id, config)
        else:
            self.husband_anchor_x = x
        if self.wife_id in self.person_order:
            self.wife_anchor_x = self.person_center(self.wife_id, config)
        else:
            self.wife_anchor_x = self.husband_anchor_x
        self.couple_center_x = (self.husband_anchor_x + self.wife_anchor_x) / 2


@dataclass
class SiblingFamilyBranch:
    id: str
    parent_union_id: str
    root_block_id: str
    child_person_id: str
    sibling_index: int
    block_ids: set[str] = field(default_factory=set)
    union_ids: set[str] = field(default_factory=set)
    min_x: float = 0.0
    max_x: float = 0.0
    envelope_width: float = 0.0
    child_branch_ids: list[str] = field(default_factory=list)
    parent_branch_id: str | None = None
    generation: int = 0


@dataclass
class MeasuredModel:
    gen_model: GenerationalModel
    person_width: dict[str, float]
    union_width: dict[str, float]
    subtree_width: dict[str, float]
    blocks: dict[str, FamilyBlock]
    root_block_ids: list[str]
    union_to_block: dict[str, str]
    focus_block_id: str | None
    branches: dict[str, SiblingFamilyBranch] = field(default_factory=dict)
    block_to_branch: dict[str, str] = field(default_factory=dict)
    union_to_branch: dict[str, str] = field(default_factory=dict)
    top_level_branch_ids: list[str] = field(default_factory=list)
    parent_union_to_branches: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class PlacedModel:
    measured: MeasuredModel
    person_x: dict[str, float]  # left edge of the card
    union_x: dict[str, float]  # stem point of the union


@dataclass
class ConstrainedModel:
    placed: PlacedModel
    iterations: int
    final_max_violation: float
    phases_run: list[str] = field(default_factory=list)
    locked_person_x: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))


# ============================================================================
# Stage 7-8: routing and result
# ============================================================================


@dataclass
class ChildDrop:
    person_id: str
    x: float
    top_y: float  # bus Y
    bottom_y: float  # top of the child card


@dataclass
class Connection:
    union_id: str
    stem_x: float
    stem_top_y: float
    stem_bottom_y: float
    branch_y: float
    branch_left_x: float
    branch_right_x: float
    connector_from_x: float
    connector_to_x: float
    connector_y: float
    drops: list[ChildDrop] = field(default_factory=list)

    @property
    def footprint(self) -> tuple[float, float]:
        """Horizontal extent of bus plus connector."""
        return (min(self.stem_x, self.branch_left_x), max(self.stem_x, self.branch_right_x))

    def shift_x(self, dx: float) -> None:
        self.stem_x += dx
        self.branch_left_x += dx
        self.branch_right_x += dx
        self.connector_from_x += dx
        self.connector_to_x += dx
        for drop in self.drops:
            drop.x += dx

    def shift_y(self, dy: float) -> None:
        self.branch_y += dy
        self.connector_y += dy
        self.stem_bottom_y += dy
        for drop in self.drops:
            drop.top_y += dy


@dataclass
class SpouseLine:
    union_id: str
    person1_id: str
    person2_id: str
    partnership_id: str | None
    y: float
    x_min: float  # right edge of the left card
    x_max: float  # left edge of the right card


@dataclass
class RoutedModel:
    constrained: ConstrainedModel
    connections: list[Connection]
    spouse_lines: list[SpouseLine]


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass
class LayoutDiagnostics:
    total_persons: int = 0
    total_unions: int = 0
    generation_range: tuple[int, int] = (0, 0)
    iterations: int = 0
    branch_count: int = 0
    validation_passed: bool = True
    errors: list[str] = field(default_factory=list)
    phases_run: list[str] = field(default_factory=list)
    routed_edges: bool = True


@dataclass
class LayoutResult:
    positions: dict[str, Position]
    connections: list[Connection]
    spouse_lines: list[SpouseLine]
    diagnostics: LayoutDiagnostics
    branch_bounds: dict[str, tuple[float, float]] = field(default_factory=dict)


@dataclass
class ValidationResult:
    passed: bool
    errors: list[str]
