"""Visualization of layout models and layout results."""

from pathlib import Path

import matplotlib.pyplot as plt
import pydot
from matplotlib.patches import FancyBboxPatch

from stemma.config import LayoutConfig
from stemma.graph import build_union_graph
from stemma.layout_types import GenerationalModel, LayoutResult
from stemma.models import Person

GENDER_COLORS = {"male": "lightblue", "female": "lightpink"}
IMAGE_FORMATS = ("png", "svg", "pdf")


def _fill_color(gender: str | None) -> str:
    return GENDER_COLORS.get(gender, "lightgray")


def _card_label(person: Person) -> str:
    birth_year = person.birth_date[:4] if person.birth_date else ""
    death_year = person.death_date[:4] if person.death_date else ""
    return f"{person.first_name}\n{person.last_name}\n{birth_year}-{death_year}"


def union_graph_to_dot(gen_model: GenerationalModel) -> pydot.Dot:
    """
    Build a Graphviz document of the union graph.

    Creates a genealogical chart where:
    - Parents appear above children (generations are ranks)
    - Partners and their union node share a rank, in model order
    - Union nodes connect partners to their children

    Args:
        gen_model: Generational model from assign_generations

    Returns:
        A pydot graph, ready for `to_string()` or `write()`
    """
    model = gen_model.model
    H = build_union_graph(model, gen_model.union_gen)

    P = pydot.Dot("family", graph_type="digraph")
    P.set("rankdir", "TB")  # Top-to-bottom (ancestors at top)
    P.set("splines", "ortho")
    P.set("nodesep", "0.4")
    P.set("ranksep", "0.6")

    for node, data in H.nodes(data=True):
        if data.get("node_type") == "family":
            P.add_node(pydot.Node(node, shape="point", width="0.1", height="0.1", label=""))
            continue
        P.add_node(
            pydot.Node(
                node,
                label=_card_label(model.persons[node]),
                shape="box",
                style="rounded,filled",
                fillcolor=_fill_color(data.get("gender")),
                fontsize="10",
            )
        )

    for u, v, data in H.edges(data=True):
        if data.get("edge_type") == "spouse_to_family":
            P.add_edge(pydot.Edge(u, v, dir="none", color="darkgray"))
        else:
            P.add_edge(pydot.Edge(u, v, color="darkgray"))

    # One rank per generation; invisible edges keep partners in model order
    for gen in sorted(gen_model.gen_bands):
        band = gen_model.gen_bands[gen]
        sg = pydot.Subgraph(f"gen_{gen - gen_model.min_gen}", rank="same")
        for person_id in band.persons:
            sg.add_node(pydot.Node(person_id))
        for union_id in band.unions:
            union = model.unions[union_id]
            sg.add_node(pydot.Node(union_id))
            if union.partner_b is not None:
                sg.add_edge(pydot.Edge(union.partner_a, union_id, style="invis"))
                sg.add_edge(pydot.Edge(union_id, union.partner_b, style="invis"))
        P.add_subgraph(sg)

    return P


def write_dot(gen_model: GenerationalModel, output_path: Path) -> None:
    """Write the union graph as DOT source, or rendered when the suffix is an image format."""
    P = union_graph_to_dot(gen_model)
    ext = output_path.suffix.lower().lstrip(".")
    if ext in IMAGE_FORMATS:
        P.write(str(output_path), format=ext)
    else:
        P.write(str(output_path), format="raw")


def plot_layout(
    result: LayoutResult,
    config: LayoutConfig,
    persons: dict[str, Person],
    output_path: Path,
    title: str | None = None,
) -> None:
    """
    Draw a layout result: cards, spouse lines and parent-child connectors.

    Args:
        result: Output of the layout pipeline
        config: The config the layout was computed with
        persons: Person records for card labels and colors
        output_path: PNG/SVG/PDF file to write
        title: Optional figure title
    """
    if result.positions:
        width = max(p.x for p in result.positions.values()) + config.card_width + config.padding
        height = max(p.y for p in result.positions.values()) + config.card_height + config.padding
    else:
        width = height = 2 * config.padding

    fig, ax = plt.subplots(figsize=(max(width / 100, 4), max(height / 100, 3)))

    for conn in result.connections:
        ax.plot([conn.stem_x, conn.stem_x], [conn.stem_top_y, conn.stem_bottom_y], color="gray", lw=1)
        if conn.connector_from_x != conn.connector_to_x:
            ax.plot(
                [conn.connector_from_x, conn.connector_to_x],
                [conn.connector_y, conn.connector_y],
                color="gray",
                lw=1,
            )
        ax.plot([conn.branch_left_x, conn.branch_right_x], [conn.branch_y, conn.branch_y], color="gray", lw=1)
        for drop in conn.drops:
            ax.plot([drop.x, drop.x], [drop.top_y, drop.bottom_y], color="gray", lw=1)

    for line in result.spouse_lines:
        ax.plot([line.x_min, line.x_max], [line.y, line.y], color="dimgray", lw=1.5)

    for person_id, pos in result.positions.items():
        person = persons.get(person_id)
        ax.add_patch(
            FancyBboxPatch(
                (pos.x, pos.y),
                config.card_width,
                config.card_height,
                boxstyle="round,pad=0,rounding_size=6",
                facecolor=_fill_color(person.gender if person else None),
                edgecolor="black",
                lw=0.8,
            )
        )
        label = _card_label(person) if person else person_id
        ax.text(
            pos.x + config.card_width / 2,
            pos.y + config.card_height / 2,
            label,
            ha="center",
            va="center",
            fontsize=7,
        )

    ax.set_xlim(0, width)
    ax.set_ylim(height, 0)  # y grows downward
    ax.set_aspect("equal")
    ax.axis("off")
    if title:
        ax.set_title(title)
    fig.tight_layout()

    ext = output_path.suffix.lower().lstrip(".")
    fig.savefig(output_path, format=ext if ext in IMAGE_FORMATS else "png", dpi=150)
    plt.close(fig)
