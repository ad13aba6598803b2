"""
Heuristic bot detection.

Bots typically exhibit:
- Little or no mouse movement
- No keyboard activity
- Automation markers (navigator.webdriver, headless flags)
- Implausibly fast first interaction
- A minimal device: no touch support and a narrow screen

Five independent checks run on every attempt; three or more suspicious
checks flag the client as a bot.
"""

import time
from collections.abc import Callable, Iterable
from typing import Optional

from pydantic import BaseModel, Field

from pollguard.schemas.client import ClientEnvironment, InteractionSignals
from pollguard.schemas.fraud import BotDetectionResult

MIN_MOUSE_EVENTS = 5
MIN_KEY_EVENTS = 3
MIN_HUMAN_INTERACTION_MS = 500
WIDE_SCREEN_MIN_WIDTH = 1024
BOT_CHECK_THRESHOLD = 3

CHECK_REASONS = {
    "mouse_movement": "Insufficient mouse movement",
    "keyboard_pattern": "Insufficient keyboard activity",
    "automation_flags": "Automation markers detected",
    "interaction_timing": "Interaction faster than humanly plausible",
    "device_capabilities": "Minimal device capabilities",
}


class BotDetector:
    """Runs the five bot heuristics over explicitly supplied signals."""

    def __init__(self, threshold: int = BOT_CHECK_THRESHOLD):
        self.threshold = threshold

    @staticmethod
    def _mouse_suspicious(signals: InteractionSignals) -> bool:
        return signals.mouse_move_count is None or signals.mouse_move_count < MIN_MOUSE_EVENTS

    @staticmethod
    def _keyboard_suspicious(signals: InteractionSignals) -> bool:
        return signals.key_press_count is None or signals.key_press_count < MIN_KEY_EVENTS

    @staticmethod
    def _automation_suspicious(signals: InteractionSignals) -> bool:
        return signals.webdriver or signals.headless or bool(signals.automation_markers)

    @staticmethod
    def _timing_suspicious(signals: InteractionSignals) -> bool:
        if signals.time_to_interaction_ms is None:
            return False
        return signals.time_to_interaction_ms < MIN_HUMAN_INTERACTION_MS

    @staticmethod
    def _device_suspicious(environment: Optional[ClientEnvironment], signals: InteractionSignals) -> bool:
        wide_screen = environment is not None and environment.screen_width >= WIDE_SCREEN_MIN_WIDTH
        return not (signals.has_touch_events or signals.max_touch_points > 0 or wide_screen)

    def evaluate(
        self,
        environment: Optional[ClientEnvironment],
        signals: InteractionSignals,
    ) -> BotDetectionResult:
        """Run every check and combine them into a verdict."""
        checks = {
            "mouse_movement": self._mouse_suspicious(signals),
            "keyboard_pattern": self._keyboard_suspicious(signals),
            "automation_flags": self._automation_suspicious(signals),
            "interaction_timing": self._timing_suspicious(signals),
            "device_capabilities": self._device_suspicious(environment, signals),
        }
        failed = [name for name, suspicious in checks.items() if suspicious]

        return BotDetectionResult(
            is_bot=len(failed) >= self.threshold,
            confidence_score=round(len(failed) / len(checks) * 100),
            detection_reasons=[CHECK_REASONS[name] for name in failed],
        )


# =============================================================================
# Signal collection
# =============================================================================


class InteractionEvent(BaseModel):
    """A raw instrumentation event reported by the page."""

    type: str  # "mousemove" | "keydown" | "touchstart" | "click"
    t: int = Field(..., ge=0)  # Milliseconds since page load


class InteractionSignalCollector:
    """
    Accumulates interaction events into an ``InteractionSignals`` snapshot.

    Mouse and keyboard buffers can be disabled to model pages that never
    attached the corresponding listeners.
    """

    def __init__(
        self,
        track_mouse: bool = True,
        track_keyboard: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._started_at = clock()
        self._mouse_moves: Optional[int] = 0 if track_mouse else None
        self._key_presses: Optional[int] = 0 if track_keyboard else None
        self._first_interaction_ms: Optional[int] = None
        self._touch_seen = False

        self.webdriver = False
        self.headless = False
        self.automation_markers: list[str] = []
        self.max_touch_points = 0

    def _mark_interaction(self, at_ms: Optional[int] = None) -> None:
        if self._first_interaction_ms is not None:
            return
        if at_ms is None:
            at_ms = int((self._clock() - self._started_at) * 1000)
        self._first_interaction_ms = at_ms

    def record_mouse_move(self, at_ms: Optional[int] = None) -> None:
        if self._mouse_moves is not None:
            self._mouse_moves += 1
        self._mark_interaction(at_ms)

    def record_key_press(self, at_ms: Optional[int] = None) -> None:
        if self._key_presses is not None:
            self._key_presses += 1
        self._mark_interaction(at_ms)

    def record_touch(self, at_ms: Optional[int] = None) -> None:
        self._touch_seen = True
        self._mark_interaction(at_ms)

    def record_click(self, at_ms: Optional[int] = None) -> None:
        self._mark_interaction(at_ms)

    def record_environment(
        self,
        webdriver: bool = False,
        headless: bool = False,
        automation_markers: Iterable[str] = (),
        max_touch_points: int = 0,
    ) -> None:
        """Record automation flags and touch capability detected once per page."""
        self.webdriver = webdriver
        self.headless = headless
        self.automation_markers = list(automation_markers)
        self.max_touch_points = max_touch_points

    def record_events(self, events: Iterable[InteractionEvent]) -> None:
        """Replay a batch of page events in timestamp order."""
        handlers = {
            "mousemove": self.record_mouse_move,
            "keydown": self.record_key_press,
            "touchstart": self.record_touch,
            "click": self.record_click,
        }
        for event in sorted(events, key=lambda e: e.t):
            handler = handlers.get(event.type)
            if handler is not None:
                handler(event.t)

    def snapshot(self) -> InteractionSignals:
        """Current signals; the collector keeps accumulating afterwards."""
        return InteractionSignals(
            mouse_move_count=self._mouse_moves,
            key_press_count=self._key_presses,
            webdriver=self.webdriver,
            headless=self.headless,
            automation_markers=list(self.automation_markers),
            time_to_interaction_ms=self._first_interaction_ms,
            has_touch_events=self._touch_seen,
            max_touch_points=self.max_touch_points,
        )
