"""Bounded driver loop over the phase graph.

Each iteration asks the orchestrator for a decision, runs the node bound to the
current phase, checkpoints, then either stops on completion or follows the
transition table. Checkpoints are awaited before the next step, so a persisted
record always reflects a phase that fully finished (or the error it raised).
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog

from sparcflow.errors import NodeExecutionError, OrchestrationError
from sparcflow.orchestrator import Orchestrator
from sparcflow.phases.base import PhaseNode
from sparcflow.state.models import (
    MODES,
    Decision,
    ErrorRecord,
    Transition,
    WorkflowInput,
    WorkflowState,
    to_iso,
)
from sparcflow.state.store import WorkflowStore
from sparcflow.transitions import TransitionTable, initial_phase, is_complete

log = structlog.get_logger(__name__)

MAX_ITERATIONS = 10
DEFAULT_NODE_TIMEOUT_SECONDS = 300.0


@dataclass(slots=True)
class WorkflowOutput:
    state: WorkflowState
    artifacts: dict[str, str | None]
    performance: dict[str, Any]
    decisions: list[Decision] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "artifacts": dict(self.artifacts),
            "performance": dict(self.performance),
            "decisions": [decision.to_dict() for decision in self.decisions],
        }


@dataclass(slots=True)
class WorkflowStatus:
    issue_id: str
    mode: str
    phase: str
    progress: int
    status: str
    artifacts: list[str]
    last_updated: str
    performance: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_id": self.issue_id,
            "mode": self.mode,
            "phase": self.phase,
            "progress": self.progress,
            "status": self.status,
            "artifacts": list(self.artifacts),
            "last_updated": self.last_updated,
            "performance": dict(self.performance),
        }


def derive_status(state: WorkflowState) -> str:
    if state.progress >= 100:
        return "completed"
    if state.metadata.errors:
        return "error"
    if state.progress > 0:
        return "in_progress"
    return "pending"


@dataclass(slots=True)
class _IssueLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class WorkflowEngine:
    def __init__(
        self,
        store: WorkflowStore,
        nodes: Mapping[str, PhaseNode],
        orchestrator: Orchestrator,
        *,
        transitions: TransitionTable | None = None,
        max_iterations: int = MAX_ITERATIONS,
        node_timeout_seconds: float = DEFAULT_NODE_TIMEOUT_SECONDS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.store = store
        self.nodes = dict(nodes)
        self.orchestrator = orchestrator
        self.transitions = transitions or TransitionTable()
        self.max_iterations = max_iterations
        self.node_timeout_seconds = node_timeout_seconds
        self._locks: dict[str, _IssueLock] = {}

    @asynccontextmanager
    async def _guard(self, issue_id: str) -> AsyncIterator[None]:
        # in-process mutex first, then the store's cross-process run lock
        entry = self._locks.get(issue_id)
        if entry is None:
            entry = self._locks[issue_id] = _IssueLock()
        entry.users += 1
        try:
            async with entry.lock, self.store.run_lock(issue_id):
                yield
        finally:
            entry.users -= 1
            if not entry.users:
                del self._locks[issue_id]

    def create_initial_state(self, workflow_input: WorkflowInput) -> WorkflowState:
        if workflow_input.mode not in MODES:
            raise ValueError(f"Unsupported mode: {workflow_input.mode!r}")
        return WorkflowState(
            issue_id=workflow_input.issue_id,
            current_mode=workflow_input.mode,
            current_phase=initial_phase(workflow_input.mode),
            issue_title=workflow_input.issue_title,
            issue_description=workflow_input.issue_description,
            user_input=workflow_input.user_input,
        )

    async def execute_workflow(self, workflow_input: WorkflowInput) -> WorkflowOutput:
        async with self._guard(workflow_input.issue_id):
            state = self.create_initial_state(workflow_input)
            log.info(
                "workflow_started",
                issue_id=state.issue_id,
                mode=state.current_mode,
                phase=state.current_phase,
            )
            await self.store.save(state)
            state = await self._run(state)
            return self._build_output(state)

    async def resume_workflow(self, issue_id: str) -> WorkflowOutput | None:
        async with self._guard(issue_id):
            state = await self.store.load(issue_id)
            if state is None:
                return None
            if is_complete(state):
                log.info("workflow_already_complete", issue_id=issue_id, phase=state.current_phase)
                return self._build_output(state)
            if self._should_rerun_current_phase(state):
                log.info("workflow_retrying_phase", issue_id=issue_id, phase=state.current_phase)
            elif self.transitions.advance(state) is None:
                log.warning("transition_missing", issue_id=issue_id, phase=state.current_phase)
                return self._build_output(state)
            log.info(
                "workflow_resumed",
                issue_id=issue_id,
                mode=state.current_mode,
                phase=state.current_phase,
            )
            state = await self._run(state)
            return self._build_output(state)

    async def get_workflow_status(self, issue_id: str) -> WorkflowStatus | None:
        state = await self.store.load(issue_id)
        if state is None:
            return None
        return WorkflowStatus(
            issue_id=state.issue_id,
            mode=state.current_mode,
            phase=state.current_phase,
            progress=state.progress,
            status=derive_status(state),
            artifacts=state.present_artifacts(),
            last_updated=to_iso(state.updated_at),
            performance=state.metadata.performance.to_dict(),
        )

    async def load_workflow_state(self, issue_id: str) -> WorkflowState | None:
        return await self.store.load(issue_id)

    async def reset_workflow(self, issue_id: str) -> bool:
        async with self._guard(issue_id):
            removed = await self.store.delete(issue_id)
        log.info("workflow_reset", issue_id=issue_id, removed=removed)
        return removed

    def get_workflow_metrics(self) -> dict[str, Any]:
        orchestrator_metrics, decision_history = self.store.orchestrator_summary()
        return {
            "total_nodes": len(self.nodes),
            "available_nodes": list(self.nodes),
            "orchestrator_metrics": orchestrator_metrics,
            "decision_history": decision_history,
        }

    async def _run(self, state: WorkflowState) -> WorkflowState:
        base_time = state.metadata.performance.execution_time
        started = time.perf_counter()
        progress_floor = state.progress

        for iteration in range(1, self.max_iterations + 1):
            state = await self._decide(state)
            phase = state.current_phase
            node = self.nodes.get(phase)
            if node is None:
                log.error("phase_node_missing", issue_id=state.issue_id, phase=phase)
                return state

            log.debug("iteration_started", issue_id=state.issue_id, phase=phase, iteration=iteration)
            node_started = time.perf_counter()
            try:
                state = await self._execute_node(node, state)
            except NodeExecutionError as exc:
                self._record_failure(state, exc)
                self._update_performance(state, phase, node_started, base_time, started)
                await self.store.save(state)
                return state

            state.progress = max(progress_floor, state.progress)
            progress_floor = state.progress
            self._update_performance(state, phase, node_started, base_time, started)
            await self.store.save(state)

            if is_complete(state):
                state.metadata.transitions.append(
                    Transition(from_phase=phase, to_phase=phase, condition="completed")
                )
                state.touch()
                await self.store.save(state)
                log.info(
                    "workflow_completed",
                    issue_id=state.issue_id,
                    mode=state.current_mode,
                    phase=phase,
                    progress=state.progress,
                )
                return state

            transition = self.transitions.advance(state)
            if transition is None:
                log.warning("transition_missing", issue_id=state.issue_id, phase=phase)
                return state
            log.info(
                "phase_transition",
                issue_id=state.issue_id,
                from_phase=transition.from_phase,
                to_phase=transition.to_phase,
                mode=state.current_mode,
            )

        log.warning(
            "iteration_limit_reached",
            issue_id=state.issue_id,
            phase=state.current_phase,
            max_iterations=self.max_iterations,
        )
        return state

    async def _decide(self, state: WorkflowState) -> WorkflowState:
        phase, mode = state.current_phase, state.current_mode
        try:
            result = await self.orchestrator.decide(state, state.issue_description)
        except OrchestrationError:
            raise
        except Exception as exc:
            raise OrchestrationError(
                f"Orchestrator '{self.orchestrator.name}' failed in phase '{phase}': {exc}"
            ) from exc

        decided = result.state
        if decided.current_phase != phase or decided.current_mode != mode:
            raise OrchestrationError(
                f"Orchestrator '{self.orchestrator.name}' changed {mode}/{phase} "
                f"to {decided.current_mode}/{decided.current_phase}"
            )
        await asyncio.to_thread(
            self.store.record_decision,
            result.decision.to_dict() if result.decision is not None else None,
            dict(result.metrics),
            issue_id=decided.issue_id,
        )
        return decided

    async def _execute_node(self, node: PhaseNode, state: WorkflowState) -> WorkflowState:
        phase = state.current_phase
        try:
            return await asyncio.wait_for(node.execute(state), timeout=self.node_timeout_seconds)
        except TimeoutError as exc:
            raise NodeExecutionError(
                f"Phase '{phase}' timed out after {self.node_timeout_seconds:.1f}s",
                phase=phase,
                timed_out=True,
            ) from exc
        except NodeExecutionError:
            raise
        except Exception as exc:
            raise NodeExecutionError(f"Phase '{phase}' failed: {exc}", phase=phase) from exc

    @staticmethod
    def _record_failure(state: WorkflowState, exc: NodeExecutionError) -> None:
        cause = exc.__cause__
        if exc.timed_out:
            error_type = "timeout"
        elif cause is not None:
            error_type = type(cause).__name__
        else:
            error_type = type(exc).__name__
        state.metadata.errors.append(
            ErrorRecord(phase=exc.phase, error_type=error_type, message=str(exc))
        )
        state.touch()
        log.error(
            "phase_failed",
            issue_id=state.issue_id,
            phase=exc.phase,
            error_type=error_type,
            error=str(exc),
        )

    @staticmethod
    def _should_rerun_current_phase(state: WorkflowState) -> bool:
        # a fresh checkpoint, or one whose last entry is this phase failing
        if not state.metadata.errors:
            return not state.metadata.transitions and not state.ai_context.agent_history
        last_error = state.metadata.errors[-1]
        if last_error.phase != state.current_phase:
            return False
        history = state.ai_context.agent_history
        return not history or last_error.timestamp >= history[-1].timestamp

    def _update_performance(
        self,
        state: WorkflowState,
        phase: str,
        node_started: float,
        base_time: float,
        run_started: float,
    ) -> None:
        now = time.perf_counter()
        performance = state.metadata.performance
        elapsed_ms = (now - node_started) * 1000.0
        performance.node_execution_times[phase] = (
            performance.node_execution_times.get(phase, 0.0) + elapsed_ms
        )
        performance.tool_usage_counts = dict(
            Counter(call.tool_name for call in state.ai_context.tool_calls)
        )

        actions = {node.action: name for name, node in self.nodes.items() if node.action}
        successes = Counter(
            actions[entry.action]
            for entry in state.ai_context.agent_history
            if entry.success and entry.action in actions
        )
        failures = Counter(error.phase for error in state.metadata.errors)
        performance.error_rates = {
            name: failures[name] / (failures[name] + successes[name])
            for name in sorted(set(successes) | set(failures))
        }

        history = state.ai_context.agent_history
        performance.success_rate = (
            sum(1 for entry in history if entry.success) / len(history) if history else 0.0
        )
        performance.execution_time = base_time + (now - run_started) * 1000.0

    @staticmethod
    def _build_output(state: WorkflowState) -> WorkflowOutput:
        performance = state.metadata.performance
        return WorkflowOutput(
            state=state,
            artifacts=dict(state.artifacts),
            performance={
                "execution_time": performance.execution_time,
                "progress": state.progress,
                "node_count": len(state.ai_context.agent_history),
                "success_rate": performance.success_rate,
            },
            decisions=list(state.ai_context.decisions),
        )
