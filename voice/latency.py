"""
Turn Latency — per-stage timing for the voice pipeline.

Measures how long each turn spends capturing speech, waiting on the
tutor service and playing the answer. Keeps a rolling window of samples
per stage and logs turns that blow their budget.
"""
from __future__ import annotations

import math
import time
import structlog
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

logger = structlog.get_logger()


class TurnStage(str, Enum):
    CAPTURE = "capture"          # listening start → final transcript
    REQUEST = "request"          # tutor request sent → response parsed
    PLAYBACK = "playback"        # answer spoken
    TOTAL = "total"              # turn start → back to idle


@dataclass
class LatencyBudget:
    capture_ms: int = 30000
    request_ms: int = 8000
    playback_ms: int = 60000
    total_ms: int = 90000

    def budget_for(self, stage: TurnStage) -> int:
        return getattr(self, f"{stage.value}_ms")


class StageStats:
    """Rolling (turn, duration) samples for one stage, newest last."""

    def __init__(self, stage: TurnStage, window_size: int = 100):
        self.stage = stage
        self._samples: deque[tuple[int, float]] = deque(maxlen=window_size)
        self.total = 0
        self.over_budget = 0

    def record(self, turn_id: int, duration_ms: float, over_budget: bool = False) -> None:
        self._samples.append((turn_id, duration_ms))
        self.total += 1
        if over_budget:
            self.over_budget += 1

    @property
    def count(self) -> int:
        return self.total

    @property
    def last_ms(self) -> Optional[float]:
        return self._samples[-1][1] if self._samples else None

    @property
    def avg_ms(self) -> float:
        durations = [d for _, d in self._samples]
        return sum(durations) / len(durations) if durations else 0.0

    def percentile(self, pct: int) -> float:
        """Nearest-rank percentile over the window."""
        durations = sorted(d for _, d in self._samples)
        if not durations:
            return 0.0
        rank = max(0, math.ceil(len(durations) * pct / 100) - 1)
        return durations[rank]

    def to_dict(self) -> dict[str, Any]:
        last = self.last_ms
        return {
            "count": self.total,
            "over_budget": self.over_budget,
            "last_ms": round(last, 1) if last is not None else None,
            "avg_ms": round(self.avg_ms, 1),
            "p50_ms": round(self.percentile(50), 1),
            "p95_ms": round(self.percentile(95), 1),
        }


class TurnLatencyTracker:
    """
    Usage:
        tracker.start(TurnStage.REQUEST, turn_id)
        reply = await client.send_turn(...)
        tracker.end(TurnStage.REQUEST, turn_id)
    """

    def __init__(self, budget: LatencyBudget = None):
        self.budget = budget or LatencyBudget()
        self._stats = {stage: StageStats(stage) for stage in TurnStage}
        self._open: dict[tuple[TurnStage, int], float] = {}
        self._violations: list[dict[str, Any]] = []

    def start(self, stage: TurnStage, turn_id: int) -> None:
        self._open[(stage, turn_id)] = time.monotonic()

    def end(self, stage: TurnStage, turn_id: int) -> Optional[float]:
        """Close a measurement. None if it was never opened or was discarded."""
        started = self._open.pop((stage, turn_id), None)
        if started is None:
            return None

        elapsed_ms = (time.monotonic() - started) * 1000
        limit = self.budget.budget_for(stage)
        late = elapsed_ms > limit
        self._stats[stage].record(turn_id, elapsed_ms, over_budget=late)
        if late:
            entry = {"stage": stage.value, "turn": turn_id,
                     "elapsed_ms": round(elapsed_ms, 1), "budget_ms": limit}
            self._violations.append(entry)
            logger.warning("turn_latency_budget_exceeded", **entry)
        return elapsed_ms

    def discard(self, turn_id: int) -> None:
        """Forget open measurements of a cancelled or failed turn."""
        for key in [k for k in self._open if k[1] == turn_id]:
            del self._open[key]

    def stats(self, stage: TurnStage) -> StageStats:
        return self._stats[stage]

    @property
    def violations(self) -> list[dict[str, Any]]:
        return list(self._violations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": {s.value: st.to_dict() for s, st in self._stats.items() if st.count},
            "violations": len(self._violations),
        }
