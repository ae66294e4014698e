"""
Dependency-resolution strategies for a batch of sessions.

- sequential: strictly one at a time, in dependency-respecting order.
- wait_for_core: every analysis session completes before any
  implementation session starts; implementation sessions then run in
  parallel. Other sessions wait on their declared dependencies.
- parallel: sessions without dependencies start at once; the rest wait
  for their declared dependencies, whatever their type.

Each mode only contributes extra scheduling gates; ``schedule`` is the one
dispatch point and SessionManager does the actual starting.
"""

import enum
from typing import Dict, List, Optional, Sequence

import structlog

from claude_hub.core.models import Session, SessionType
from claude_hub.core.sessions.manager import SessionManager, topological_order

logger = structlog.get_logger()


class DependencyMode(str, enum.Enum):
    SEQUENTIAL = "sequential"
    WAIT_FOR_CORE = "wait_for_core"
    PARALLEL = "parallel"


def scheduling_gates(mode: DependencyMode, sessions: Sequence[Session]) -> Dict[str, List[str]]:
    """Extra ids each session must wait for on top of its declared dependencies."""
    if mode == DependencyMode.SEQUENTIAL:
        ordered = topological_order(sessions, known={d for s in sessions for d in s.dependencies})
        return {
            current.id: [previous.id]
            for previous, current in zip(ordered, ordered[1:])
        }

    if mode == DependencyMode.WAIT_FOR_CORE:
        core = [s.id for s in sessions if s.type == SessionType.ANALYSIS]
        return {
            s.id: list(core)
            for s in sessions
            if s.type == SessionType.IMPLEMENTATION
        }

    if mode == DependencyMode.PARALLEL:
        return {}

    raise ValueError(f"Unknown dependency mode: {mode}")


async def schedule(
    mode: DependencyMode,
    manager: SessionManager,
    sessions: Sequence[Session],
    timeout_ms: Optional[int] = None,
) -> None:
    """Hand a registered batch to the manager under ``mode``."""
    gates = scheduling_gates(mode, sessions)
    ordered = manager.validate_schedule(sessions, gates)

    logger.info("Scheduling sessions", mode=mode.value, sessions=[s.id for s in ordered])
    for session in ordered:
        await manager.queue(session.id, after=gates.get(session.id, ()), timeout_ms=timeout_ms)
