"""
Parallel mission orchestration.

Missions are assigned round-robin to a fixed set of browser sessions and run
concurrently. Tasks that land on the same session run one after another;
a failing task never affects its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .agent import AgentResult, run_task
from .llm_client import ModelClient
from .logger import RunLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskAssignment:
    """A mission bound to the session that will run it."""
    session: Any
    mission: str
    index: int


@dataclass
class TaskOutcome:
    """Settled result of one assignment: either a result or an error."""
    assignment: TaskAssignment
    result: Optional[AgentResult] = None
    error: Optional[BaseException] = None

    @property
    def fulfilled(self) -> bool:
        return self.error is None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.success

    def to_dict(self) -> dict[str, Any]:
        session = self.assignment.session
        return {
            "index": self.assignment.index,
            "mission": self.assignment.mission,
            "session": getattr(session, "label", str(session)),
            "result": self.result.to_dict() if self.result else None,
            "error": f"{type(self.error).__name__}: {self.error}" if self.error else None,
        }


@dataclass(frozen=True)
class BatchSummary:
    """Counts over a batch of outcomes."""
    fulfilled: int
    rejected: int
    succeeded: int


def assign_round_robin(sessions: Sequence[Any], missions: Sequence[str]) -> list[TaskAssignment]:
    """Mission i goes to session i mod len(sessions).

    Raises:
        ValueError: If there are missions but no sessions
    """
    if missions and not sessions:
        raise ValueError("Cannot assign missions: no sessions available")
    return [
        TaskAssignment(sessions[i % len(sessions)], mission, i)
        for i, mission in enumerate(missions)
    ]


def summarize(outcomes: Sequence[TaskOutcome]) -> BatchSummary:
    fulfilled = sum(1 for outcome in outcomes if outcome.fulfilled)
    return BatchSummary(
        fulfilled=fulfilled,
        rejected=len(outcomes) - fulfilled,
        succeeded=sum(1 for outcome in outcomes if outcome.succeeded),
    )


class ParallelOrchestrator:
    """Runs a batch of missions across browser sessions."""

    def __init__(
        self,
        client: ModelClient,
        max_turns: int,
        run_logger_factory: Optional[Callable[[TaskAssignment], RunLogger]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            client: Model client shared by all loops
            max_turns: Turn budget per mission
            run_logger_factory: Builds a RunLogger per assignment (optional)
        """
        self.client = client
        self.max_turns = max_turns
        self.run_logger_factory = run_logger_factory
        self._stop_events: dict[int, asyncio.Event] = {}

    def stop(self, index: int) -> None:
        """Stop the task with this index before its next turn.

        Called between batches, the stop applies to the next run_all only.
        """
        self._stop_events.setdefault(index, asyncio.Event()).set()

    def stop_all(self) -> None:
        for event in self._stop_events.values():
            event.set()

    async def _run_one(
        self,
        assignment: TaskAssignment,
        lock: asyncio.Lock,
        stop_event: asyncio.Event,
    ) -> AgentResult:
        async with lock:
            run_logger = None
            if self.run_logger_factory is not None:
                run_logger = self.run_logger_factory(assignment)
            logger.info(
                "Task %d starting on %s",
                assignment.index,
                getattr(assignment.session, "label", assignment.session),
            )
            return await run_task(
                assignment.session,
                assignment.mission,
                self.client,
                self.max_turns,
                run_logger=run_logger,
                stop_event=stop_event,
            )

    async def run_all(self, sessions: Sequence[Any], missions: Sequence[str]) -> list[TaskOutcome]:
        """Run every mission and wait for all of them to settle.

        Returns:
            One outcome per mission, in mission order
        """
        assignments = assign_round_robin(sessions, missions)

        # Stops requested before the batch carry over; everything else is fresh
        requested = self._stop_events
        stop_events = {
            a.index: requested.get(a.index) or asyncio.Event() for a in assignments
        }
        self._stop_events = stop_events

        # One lock per distinct session
        locks: dict[int, asyncio.Lock] = {}
        for assignment in assignments:
            locks.setdefault(id(assignment.session), asyncio.Lock())

        try:
            settled = await asyncio.gather(
                *(
                    self._run_one(a, locks[id(a.session)], stop_events[a.index])
                    for a in assignments
                ),
                return_exceptions=True,
            )
        finally:
            self._stop_events = {}

        outcomes = []
        for assignment, value in zip(assignments, settled):
            if isinstance(value, BaseException):
                logger.warning("Task %d failed: %s", assignment.index, value)
                outcomes.append(TaskOutcome(assignment, error=value))
            else:
                outcomes.append(TaskOutcome(assignment, result=value))
        return outcomes
