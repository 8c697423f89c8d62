# statetree/__init__.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

"""statetree: hierarchical state machine runtime

Responsibilities:
    - State tree definition through a builder API or a configuration literal
    - Event resolution with bubbling, wildcards and guard chains
    - Ordered exit, transition and entry actions
    - Serialized per-instance event processing on asyncio
    - Bounded history with rollback and snapshot restore

Logging:
    - Every module logs through ``logging.getLogger(__name__)``
    - Nothing is configured here; applications attach their own handlers
"""

from statetree.core.actions import ActionResult, action, assign
from statetree.core.config import MachineOptions
from statetree.core.errors import (
    DefinitionError,
    HistoryError,
    HSMError,
    InvalidSnapshotError,
    QueueClearedError,
    StateNotFoundError,
    TransitionError,
    ValidationError,
)
from statetree.core.events import Event
from statetree.core.guards import all_of, any_of, not_
from statetree.core.state_machine import Machine, create_machine
from statetree.core.states import StateNode
from statetree.runtime.history import HistoryView, Snapshot
from statetree.runtime.instance import Instance, SendResult
from statetree.runtime.subscriptions import StateChange
from statetree.visualizers import render_mermaid, render_plantuml

__all__ = [
    "ActionResult",
    "DefinitionError",
    "Event",
    "HSMError",
    "HistoryError",
    "HistoryView",
    "Instance",
    "InvalidSnapshotError",
    "Machine",
    "MachineOptions",
    "QueueClearedError",
    "SendResult",
    "Snapshot",
    "StateChange",
    "StateNode",
    "StateNotFoundError",
    "TransitionError",
    "ValidationError",
    "action",
    "all_of",
    "any_of",
    "assign",
    "create_machine",
    "not_",
    "render_mermaid",
    "render_plantuml",
]
