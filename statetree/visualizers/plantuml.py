# statetree/visualizers/plantuml.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Set

from statetree.core.states import StateNode
from statetree.visualizers.common import active_paths, collect_edges, diagram_id, edge_label

if TYPE_CHECKING:
    from statetree.core.state_machine import Machine
    from statetree.runtime.instance import Instance

PLANTUML_START = "@startuml"
PLANTUML_END = "@enduml"
INDENT = "  "
ACTIVE_COLOR = "#palegreen"


def render_plantuml(machine: "Machine", instance: Optional["Instance"] = None) -> str:
    """
    Render ``machine`` as a PlantUML state diagram. Entry and exit actions are
    listed inside their states; transition labels carry guards and actions.

    :param machine: The machine to draw.
    :param instance: When given, its active states are colored.
    """
    active = active_paths(instance)
    lines = [PLANTUML_START]

    root = machine.root
    if root.initial_id in root.children:
        lines.append(f"{INDENT}[*] --> {diagram_id(root.children[root.initial_id])}")
    for child in root.children.values():
        _render_state(child, lines, 1, active)

    for edge in collect_edges(machine):
        label = edge_label(edge, show_guards=True, show_actions=True)
        if edge.source is None:
            lines.append(f"{INDENT}' global {label} --> {diagram_id(edge.target)}")
        else:
            lines.append(f"{INDENT}{diagram_id(edge.source)} --> {diagram_id(edge.target)} : {label}")

    lines.append(PLANTUML_END)
    return "\n".join(lines)


def _render_state(node: StateNode, lines: List[str], depth: int, active: Set[str]) -> None:
    indent = INDENT * depth
    name = diagram_id(node)
    color = f" {ACTIVE_COLOR}" if node.path in active else ""

    if node.is_composite:
        lines.append(f'{indent}state "{node.id}" as {name}{color} {{')
        if node.initial_id in node.children:
            lines.append(f"{indent}{INDENT}[*] --> {diagram_id(node.children[node.initial_id])}")
        for child in node.children.values():
            _render_state(child, lines, depth + 1, active)
        lines.append(f"{indent}}}")
    else:
        lines.append(f'{indent}state "{node.id}" as {name}{color}')

    for kind, actions in (("entry", node.entry_actions), ("exit", node.exit_actions)):
        if actions:
            lines.append(f"{indent}{name} : {kind} / {', '.join(act.label for act in actions)}")
