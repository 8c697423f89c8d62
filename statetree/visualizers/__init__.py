"""
Text renderers for state trees. Each renderer reads a machine (and
optionally a running instance) and returns diagram source; nothing is fed
back into the engine.
"""

from statetree.visualizers.mermaid import render_mermaid
from statetree.visualizers.plantuml import render_plantuml

__all__ = ["render_mermaid", "render_plantuml"]
