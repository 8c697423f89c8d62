# statetree/visualizers/mermaid.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Set

from statetree.core.states import StateNode
from statetree.visualizers.common import active_paths, collect_edges, diagram_id, edge_label

if TYPE_CHECKING:
    from statetree.core.state_machine import Machine
    from statetree.runtime.instance import Instance

INDENT = "    "
ACTIVE_STYLE = "fill:#c8e6c9,stroke:#1b5e20,stroke-width:2px"
_DIRECTIONS = frozenset({"TB", "BT", "LR", "RL"})


def render_mermaid(
    machine: "Machine",
    instance: Optional["Instance"] = None,
    direction: Optional[str] = None,
    show_guards: bool = False,
) -> str:
    """
    Render ``machine`` as a Mermaid ``stateDiagram-v2``.

    :param machine: The machine to draw.
    :param instance: When given, its active states get the ``active`` class.
    :param direction: One of TB, BT, LR, RL.
    :param show_guards: Append ``[guard]`` labels to guarded transitions.
    :raises ValueError: For an unknown direction.
    """
    if direction is not None and direction not in _DIRECTIONS:
        raise ValueError(f"Unknown diagram direction: {direction!r}")

    lines = ["stateDiagram-v2"]
    if direction:
        lines.append(f"{INDENT}direction {direction}")

    root = machine.root
    if root.initial_id in root.children:
        lines.append(f"{INDENT}[*] --> {diagram_id(root.children[root.initial_id])}")
    for child in root.children.values():
        _render_state(child, lines, 1)

    for edge in collect_edges(machine):
        label = edge_label(edge, show_guards=show_guards)
        if edge.source is None:
            lines.append(f"{INDENT}%% global {label} --> {diagram_id(edge.target)}")
        else:
            lines.append(f"{INDENT}{diagram_id(edge.source)} --> {diagram_id(edge.target)} : {label}")

    active = active_paths(instance)
    if active:
        lines.append(f"{INDENT}classDef active {ACTIVE_STYLE}")
        lines.append(f"{INDENT}class {','.join(_ids_in_order(root, active))} active")
    return "\n".join(lines)


def _render_state(node: StateNode, lines: List[str], depth: int) -> None:
    indent = INDENT * depth
    name = diagram_id(node)
    if not node.is_composite:
        lines.append(f'{indent}state "{node.id}" as {name}')
        return
    lines.append(f"{indent}state {name} {{")
    if node.initial_id in node.children:
        lines.append(f"{indent}{INDENT}[*] --> {diagram_id(node.children[node.initial_id])}")
    for child in node.children.values():
        _render_state(child, lines, depth + 1)
    lines.append(f"{indent}}}")


def _ids_in_order(root: StateNode, paths: Set[str]) -> List[str]:
    return [diagram_id(node) for node in root.walk() if node.path in paths]
