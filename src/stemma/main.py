"""
1) Load family data from a JSON document or a GEDCOM file.
2) Validate the family data for cycles, impossible ages, and date ordering.
3) Lay out the tree around a focus person.
4) Plot the layout (and optionally write the union graph as DOT).
"""

import argparse
import logging
from pathlib import Path

from stemma.config import DEFAULT_LAYOUT_CONFIG, DisplayPolicy, SelectionPolicy
from stemma.errors import DataFormatError
from stemma.parsing import load_family_data
from stemma.pipeline import build_generational_model, compute_layout
from stemma.plotting import plot_layout, write_dot
from stemma.validation import validate_family_data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lay out a family tree around one person.")
    parser.add_argument("data_file", type=Path, help="JSON document or GEDCOM (.ged) file.")
    parser.add_argument("--focus", required=True, help="ID of the focus person.")
    parser.add_argument("--ancestors", type=int, default=2, help="Ancestor generations (default: 2).")
    parser.add_argument("--descendants", type=int, default=2, help="Descendant generations (default: 2).")
    parser.add_argument("--aunts-uncles", action="store_true", help="Include the parents' siblings.")
    parser.add_argument("--cousins", action="store_true", help="Include the parents' siblings' descendants.")
    parser.add_argument(
        "--collapsed",
        action="store_true",
        help="Do not pull in or split out the other partnerships of persons near the focus.",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("family_tree.png"),
        help="Plot file (.png, .svg or .pdf).",
    )
    parser.add_argument("--dot", type=Path, help="Also write the union graph (.dot, or an image format).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log stage details.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    print(f"Loading family data: {args.data_file}")
    try:
        data = load_family_data(args.data_file)
    except (OSError, DataFormatError) as exc:
        print(f"  Could not load data: {exc}")
        return 1
    print(f"  Found {len(data.persons)} persons and {len(data.partnerships)} partnerships")

    if args.focus not in data.persons:
        print(f"  Unknown focus person: {args.focus}")
        return 1

    print("Validating family data...")
    warnings = validate_family_data(data)
    if warnings:
        print(f"  Found {len(warnings)} validation warnings:")
        for w in warnings[:10]:
            print(f"    - {w}")
        if len(warnings) > 10:
            print(f"    ... and {len(warnings) - 10} more")
    else:
        print("  No validation issues found")

    policy = SelectionPolicy(
        ancestor_depth=args.ancestors,
        descendant_depth=args.descendants,
        include_aunts_uncles=args.aunts_uncles,
        include_cousins=args.cousins,
    )
    display_policy = DisplayPolicy(auto_expand=not args.collapsed)
    config = DEFAULT_LAYOUT_CONFIG

    print(f"Computing layout around {data.persons[args.focus].name}...")
    result = compute_layout(data, args.focus, policy, config, display_policy)
    diagnostics = result.diagnostics
    low, high = diagnostics.generation_range
    print(
        f"  Placed {len(result.positions)} persons in {high - low + 1} generations "
        f"({len(result.connections)} connections, {diagnostics.branch_count} branches)"
    )
    if not diagnostics.validation_passed:
        print(f"  Layout has {len(diagnostics.errors)} problems:")
        for error in diagnostics.errors[:10]:
            print(f"    - {error}")

    print(f"Plotting layout to: {args.output}")
    plot_layout(result, config, data.persons, args.output, title=data.persons[args.focus].name)

    if args.dot:
        print(f"Writing union graph to: {args.dot}")
        write_dot(build_generational_model(data, args.focus, policy, display_policy), args.dot)

    print("Done!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
