"""
Box lifecycle event engine.

Watches the per-frame cell set and decides, at most once per cell, whether
the live price hit it while it was the current time column ("activated") or
whether it rolled into the past untouched ("expired").
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from .grid import GridBox, TimeState, is_price_in_box

logger = logging.getLogger(__name__)


class BoxEventType(Enum):
    """Outcome of a cell."""

    ACTIVATED = "activated"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BoxEvent:
    type: BoxEventType
    box: GridBox

    @property
    def key(self) -> str:
        return self.box.key


class BoxEventEngine:
    """
    Per-session cell lifecycle tracker.

    State carried across frames:
        activated: keys whose cell was hit while current.
        prev_time_state: last seen time state per visible key.

    A key leaving the visible set is dropped from both. Keys that already
    produced an outcome are additionally remembered until their column can no
    longer be current, so a cell scrolling out and back in cannot produce a
    second, contradicting outcome.

    Example:
        engine = BoxEventEngine(
            price_step=200,
            on_box_activated=lambda box: print("hit", box.key),
        )
        events = engine.process_boxes(boxes, current_price=97_050.0)
    """

    def __init__(
        self,
        price_step: float,
        on_box_activated: Optional[Callable[[GridBox], None]] = None,
        on_box_expired: Optional[Callable[[GridBox], None]] = None,
    ) -> None:
        self.price_step = price_step
        self.on_box_activated = on_box_activated
        self.on_box_expired = on_box_expired

        self._activated: Set[str] = set()
        self._prev_time_state: Dict[str, TimeState] = {}
        self._resolved: Dict[str, int] = {}  # key -> time_index

    @property
    def activated_boxes(self) -> FrozenSet[str]:
        """Read-only view of currently activated keys."""
        return frozenset(self._activated)

    @property
    def resolved_boxes(self) -> FrozenSet[str]:
        """Keys that produced an outcome and whose column may still be current."""
        return frozenset(self._resolved)

    def process_boxes(
        self,
        boxes: Iterable[GridBox],
        current_price: float,
        current_time_index: Optional[int] = None,
    ) -> List[BoxEvent]:
        """
        Advance the lifecycle by one frame.

        Args:
            boxes: Cells visible in this frame.
            current_price: Live (unsmoothed) price.
            current_time_index: Index of the current time column. When omitted,
                a lower bound is taken from the visible cells.

        Returns:
            Events emitted during this frame, in box order.
        """
        events: List[BoxEvent] = []
        current_keys: Set[str] = set()
        earliest_current: Optional[int] = current_time_index

        for box in boxes:
            current_keys.add(box.key)
            prev = self._prev_time_state.get(box.key)

            if current_time_index is None and box.time_state is not TimeState.FUTURE:
                # A past column means the current one is strictly later
                bound = box.time_index
                if box.time_state is TimeState.PAST:
                    bound += 1
                if earliest_current is None or bound > earliest_current:
                    earliest_current = bound

            if (
                box.time_state is TimeState.CURRENT
                and box.key not in self._activated
                and box.key not in self._resolved
                and is_price_in_box(current_price, box.price_index, self.price_step)
            ):
                self._activated.add(box.key)
                self._resolved[box.key] = box.time_index
                events.append(BoxEvent(BoxEventType.ACTIVATED, box))
                logger.debug(f"Box {box.key} activated at {current_price}")
                self._notify(self.on_box_activated, box)

            if (
                prev is TimeState.CURRENT
                and box.time_state is TimeState.PAST
                and box.key not in self._activated
                and box.key not in self._resolved
            ):
                self._resolved[box.key] = box.time_index
                events.append(BoxEvent(BoxEventType.EXPIRED, box))
                logger.debug(f"Box {box.key} expired")
                self._notify(self.on_box_expired, box)

            self._prev_time_state[box.key] = box.time_state

        for key in list(self._prev_time_state):
            if key not in current_keys:
                del self._prev_time_state[key]
                self._activated.discard(key)

        if earliest_current is not None:
            for key, idx in list(self._resolved.items()):
                if idx < earliest_current:
                    del self._resolved[key]

        return events

    def reset(self) -> None:
        """Forget all cell identities (e.g. when switching instruments)."""
        self._activated.clear()
        self._prev_time_state.clear()
        self._resolved.clear()

    def _notify(self, callback: Optional[Callable[[GridBox], None]], box: GridBox) -> None:
        if callback is None:
            return
        try:
            callback(box)
        except Exception:
            logger.exception(f"Box event callback failed for {box.key}")
