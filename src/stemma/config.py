"""Layout configuration and selection/display policies."""

from dataclasses import dataclass, field, replace

DISPLAY_MODES = ("collapsed", "expanded")
CONSTRAINT_PHASES = ("A", "B")


@dataclass(frozen=True)
class LayoutConfig:
    """Pixel magnitudes shared by every layout stage."""

    card_width: float = 130
    card_height: float = 65
    horizontal_gap: float = 15
    vertical_gap: float = 80
    partner_gap: float = 12
    padding: float = 50
    min_edge_clearance: float = 14

    @property
    def row_height(self) -> float:
        return self.card_height + self.vertical_gap

    def with_overrides(self, **overrides) -> "LayoutConfig":
        return replace(self, **overrides)


DEFAULT_LAYOUT_CONFIG = LayoutConfig()


@dataclass(frozen=True)
class SelectionPolicy:
    ancestor_depth: int = 2
    descendant_depth: int = 2
    include_aunts_uncles: bool = False
    include_cousins: bool = False


DEFAULT_SELECTION_POLICY = SelectionPolicy()


@dataclass(frozen=True)
class DisplayPolicy:
    """How persons with several partnerships are shown.

    In "expanded" mode every person in `expanded_person_ids` with more than one
    visible partnership is drawn as a partner chain, with partners pulled into
    the selection and folded partnerships split out. `auto_expand` adds the
    persons near the focus that have several partnerships. In either mode,
    partners that are already selected sit next to the person they share.
    """

    mode: str = "collapsed"
    expanded_person_ids: frozenset[str] = field(default_factory=frozenset)
    auto_expand: bool = True

    def __post_init__(self):
        if self.mode not in DISPLAY_MODES:
            raise ValueError(f"Unknown display mode: {self.mode}")


DEFAULT_DISPLAY_POLICY = DisplayPolicy()

DEFAULT_MAX_ITERATIONS = 20
DEFAULT_TOLERANCE = 0.5
