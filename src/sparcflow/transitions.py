"""Phase graph for the design → build → debug cycle.

The graph is plain data: a successor map plus the modes entered on specific
edges. ``is_complete`` is checked by the engine before ``advance`` so the
edge out of ``fix_generation`` is never followed inside a single run.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from sparcflow.state.models import Transition, WorkflowState

NEXT_PHASE: Mapping[str, str] = MappingProxyType(
    {
        "specification": "pseudocode",
        "pseudocode": "architecture",
        "architecture": "refinement",
        "refinement": "completion",
        "completion": "implementation",
        "implementation": "testing",
        "testing": "analysis",
        "analysis": "fix_generation",
        "fix_generation": "specification",
    }
)

MODE_PHASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "design": ("specification", "pseudocode", "architecture", "refinement", "completion"),
        "build": ("implementation", "testing"),
        "debug": ("analysis", "fix_generation"),
    }
)

INITIAL_PHASE: Mapping[str, str] = MappingProxyType(
    {mode: phases[0] for mode, phases in MODE_PHASES.items()}
)

TERMINAL_PHASE: Mapping[str, str] = MappingProxyType(
    {mode: phases[-1] for mode, phases in MODE_PHASES.items()}
)

# (target phase, mode required before the edge or None for any) -> new mode
MODE_ENTRY: Mapping[tuple[str, str | None], str] = MappingProxyType(
    {
        ("implementation", None): "build",
        ("analysis", None): "debug",
        ("specification", "debug"): "design",
    }
)


def initial_phase(mode: str) -> str:
    return INITIAL_PHASE.get(mode, "specification")


def phases_for_mode(mode: str) -> tuple[str, ...]:
    return MODE_PHASES.get(mode, ())


def is_complete(state: WorkflowState) -> bool:
    if state.progress >= 100:
        return True
    return TERMINAL_PHASE.get(state.current_mode) == state.current_phase


@dataclass(frozen=True, slots=True)
class TransitionTable:
    successors: Mapping[str, str] = field(default_factory=lambda: NEXT_PHASE)
    mode_entry: Mapping[tuple[str, str | None], str] = field(default_factory=lambda: MODE_ENTRY)

    def next(self, phase: str) -> str | None:
        return self.successors.get(phase)

    def mode_after(self, current_mode: str, next_phase: str) -> str:
        scoped = self.mode_entry.get((next_phase, current_mode))
        if scoped is not None:
            return scoped
        return self.mode_entry.get((next_phase, None), current_mode)

    def phases(self) -> list[str]:
        return list(self.successors)

    def advance(self, state: WorkflowState) -> Transition | None:
        """Move ``state`` along its outgoing edge and log the transition.

        Returns ``None`` without touching the state when the current phase
        has no successor.
        """
        current = state.current_phase
        target = self.next(current)
        if target is None:
            return None
        state.current_mode = self.mode_after(state.current_mode, target)
        state.current_phase = target
        state.touch()
        transition = Transition(
            from_phase=current,
            to_phase=target,
            condition="automatic",
            timestamp=state.updated_at,
        )
        state.metadata.transitions.append(transition)
        return transition
