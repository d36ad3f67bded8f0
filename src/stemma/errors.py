"""Exception types raised outside the pure layout stages."""


class LayoutError(Exception):
    """Base class for stemma errors."""


class DataFormatError(LayoutError):
    """A host document or GEDCOM record could not be turned into family data."""


class LockedPositionError(LayoutError):
    """Ancestor placement tried to move a position locked by Phase A."""

    def __init__(self, moved: list[str]):
        self.moved = moved
        preview = "; ".join(moved[:5])
        more = f" (+{len(moved) - 5} more)" if len(moved) > 5 else ""
        super().__init__(f"Locked positions changed: {preview}{more}")
