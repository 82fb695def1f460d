"""
Gamification progression tracker.

Displays points, level and badges exactly as the server declares them.
Points are always replaced by the event's ``totalPoints`` and levels only
change on a server-asserted ``levelUp``; nothing is recomputed from local
deltas or thresholds. Ranking is never computed here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from donorhub_realtime.types import CelebrationState, GamificationState

logger = logging.getLogger(__name__)

DEFAULT_CELEBRATION_MS = 1500


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class GamificationTracker:
    """Points/level/badge display state and the level-up celebration."""

    def __init__(
        self,
        points: int = 0,
        level: int = 1,
        celebration_duration_ms: int = DEFAULT_CELEBRATION_MS,
    ) -> None:
        self._state = GamificationState(points=points, level=level)
        self._duration = celebration_duration_ms / 1000.0
        self._timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> GamificationState:
        return self._state.model_copy(deep=True)

    @property
    def points(self) -> int:
        return self._state.points

    @property
    def level(self) -> int:
        return self._state.level

    @property
    def badges(self) -> frozenset[str]:
        return frozenset(self._state.badges)

    @property
    def celebration(self) -> CelebrationState:
        return self._state.celebration

    @property
    def is_celebrating(self) -> bool:
        return self._state.celebration is CelebrationState.CELEBRATING

    def apply_points_event(
        self,
        total_points: Any,
        level_up: bool = False,
        new_level: Any = None,
    ) -> None:
        """Apply a ``points:earned`` event."""
        points = _as_int(total_points)
        if points is None or points < 0:
            logger.debug("Ignoring invalid totalPoints %r", total_points)
        else:
            self._state.points = points

        if not level_up:
            return
        level = _as_int(new_level)
        if level is None or level < 1:
            logger.debug("Level-up with invalid newLevel %r; keeping level %d", new_level, self._state.level)
        else:
            self._state.level = level
        self._celebrate()

    def load(self, points: Any, level: Any, badges: Iterable[Any] = ()) -> None:
        """Seed progression from a server snapshot, e.g. the profile response.

        Replaces points, level and badges; invalid values keep the current
        ones. Does not celebrate.
        """
        value = _as_int(points)
        if value is not None and value >= 0:
            self._state.points = value
        else:
            logger.debug("Ignoring invalid points %r in snapshot", points)
        value = _as_int(level)
        if value is not None and value >= 1:
            self._state.level = value
        else:
            logger.debug("Ignoring invalid level %r in snapshot", level)
        self._state.badges = {str(b) for b in badges if b is not None and b != ""}

    def apply_badge_event(self, badge_id: Any) -> bool:
        """Add a badge; returns False for repeats and missing ids."""
        if badge_id is None or badge_id == "":
            logger.debug("Ignoring badge event without an id")
            return False
        badge = str(badge_id)
        if badge in self._state.badges:
            return False
        self._state.badges.add(badge)
        return True

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._state.celebration = CelebrationState.IDLE

    def _celebrate(self) -> None:
        # A level-up during a celebration restarts the timer.
        if self._timer is not None:
            self._timer.cancel()
        self._state.celebration = CelebrationState.CELEBRATING
        self._timer = asyncio.get_running_loop().call_later(self._duration, self._settle)
        logger.info("Level up: now level %d", self._state.level)

    def _settle(self) -> None:
        self._timer = None
        self._state.celebration = CelebrationState.IDLE
