"""Cosmetic feedback (vibration and confetti) sent to capable browsers.

Effects are recorded while a request is handled and sent to the page as an
``HX-Trigger`` header, where a small script calls the Vibration API or
spawns particles. Requests that cannot run them (plain form posts, API
clients, tests) get ``NullFeedback`` and nothing is emitted.
"""

import json
from enum import Enum
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response


class HapticPattern(str, Enum):
    """Named vibration patterns."""

    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SELECTION = "selection"


# Vibration durations in milliseconds (single pulse or on/off sequence)
HAPTIC_PATTERNS: dict[HapticPattern, list[int]] = {
    HapticPattern.LIGHT: [10],
    HapticPattern.MEDIUM: [20],
    HapticPattern.HEAVY: [30],
    HapticPattern.SUCCESS: [10, 50, 10, 50, 10],
    HapticPattern.WARNING: [20, 100, 20],
    HapticPattern.ERROR: [50, 100, 50, 100, 50],
    HapticPattern.SELECTION: [5],
}


class CelebrationType(str, Enum):
    SUCCESS = "success"
    EPIC = "epic"
    SIMPLE = "simple"


CELEBRATION_COLORS: dict[CelebrationType, list[str]] = {
    CelebrationType.SUCCESS: ["#16a34a", "#22c55e", "#86efac", "#dcfce7"],
    CelebrationType.EPIC: ["#3b82f6", "#8b5cf6", "#ec4899", "#f59e0b", "#10b981"],
    CelebrationType.SIMPLE: ["#3b82f6", "#60a5fa", "#93c5fd"],
}


class NullFeedback:
    """Feedback sink for clients without effect support."""

    supported = False

    def haptic(self, pattern: HapticPattern = HapticPattern.LIGHT) -> bool:
        return False

    def celebrate(
        self,
        kind: CelebrationType = CelebrationType.SUCCESS,
        particles: int = 30,
    ) -> bool:
        return False

    def apply(self, response: Response) -> Response:
        return response


class HtmxFeedback(NullFeedback):
    """Collects effects and emits them as client-side HTMX events."""

    supported = True

    def __init__(self):
        self.events: dict[str, list[dict]] = {}

    def _push(self, name: str, detail: dict) -> bool:
        self.events.setdefault(name, []).append(detail)
        return True

    def haptic(self, pattern: HapticPattern = HapticPattern.LIGHT) -> bool:
        return self._push("haptic", {"pattern": HAPTIC_PATTERNS[HapticPattern(pattern)]})

    def celebrate(
        self,
        kind: CelebrationType = CelebrationType.SUCCESS,
        particles: int = 30,
    ) -> bool:
        kind = CelebrationType(kind)
        return self._push(
            "celebrate", {"colors": CELEBRATION_COLORS[kind], "particles": particles}
        )

    def apply(self, response: Response) -> Response:
        if self.events:
            response.headers["HX-Trigger"] = json.dumps(self.events)
        return response


def feedback_for(request: Optional[Request]) -> NullFeedback:
    """Pick a feedback sink based on whether the caller is an HTMX page."""
    if request is not None and request.headers.get("HX-Request"):
        return HtmxFeedback()
    return NullFeedback()
