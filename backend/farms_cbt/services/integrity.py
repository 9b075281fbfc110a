"""
Integrity Monitor - turns browser signals into forced submissions.

The exam page forwards what it observes (visibility changes, key presses,
context-menu events, window dimensions sampled once per second) and the
monitor decides whether the signal is a violation. The first violation
calls `on_violation(reason)`; everything after that is ignored.

Detection runs on signals the client chooses to send. A trainee who
disables the page's scripts sends nothing, so this is a deterrent and an
audit trail, never an enforcement boundary.
"""

import os
from typing import Callable, Optional

from farms_cbt.logging_config import get_logger, log_with_context

logger = get_logger("integrity")

DEVTOOLS_THRESHOLD_PX = int(os.getenv("CBT_DEVTOOLS_THRESHOLD_PX", "160"))

VISIBILITY_CHANGE = "visibility_change"
SCREENSHOT_ATTEMPT = "screenshot_attempt"
DEVTOOLS_ACCESS = "devtools_access"
CONTEXT_MENU = "context_menu"
DEVTOOLS_RESIZE_HEURISTIC = "devtools_resize_heuristic"

VIOLATION_REASONS = (
    VISIBILITY_CHANGE, SCREENSHOT_ATTEMPT, DEVTOOLS_ACCESS,
    CONTEXT_MENU, DEVTOOLS_RESIZE_HEURISTIC,
)


def classify_key(key: str, ctrl: bool = False, shift: bool = False,
                 alt: bool = False, meta: bool = False) -> Optional[str]:
    """
    Map a keydown to a violation reason, or None for an ordinary key.

    PrintScreen (with or without Alt) is a screenshot attempt; F12,
    Ctrl+Shift+I/C/J and Ctrl+U open developer tools or the page source.
    """
    if key == "PrintScreen":
        return SCREENSHOT_ATTEMPT
    if key == "F12":
        return DEVTOOLS_ACCESS
    if ctrl and shift and key.upper() in ("I", "C", "J"):
        return DEVTOOLS_ACCESS
    if ctrl and not shift and key.lower() == "u":
        return DEVTOOLS_ACCESS
    return None


def exceeds_devtools_threshold(outer_width: int, outer_height: int,
                               inner_width: int, inner_height: int,
                               threshold: int = DEVTOOLS_THRESHOLD_PX) -> bool:
    """A docked devtools panel shows up as a large outer/inner size gap."""
    return (outer_height - inner_height > threshold
            or outer_width - inner_width > threshold)


class IntegrityMonitor:
    def __init__(self, on_violation: Callable[[str], None],
                 threshold: int = DEVTOOLS_THRESHOLD_PX, context: dict = None):
        self.on_violation = on_violation
        self.threshold = threshold
        self.context = context or {}
        self.active = False
        self.violation_triggered = False
        self.violation_reason: Optional[str] = None

    def start(self) -> None:
        self.active = True

    def stop(self) -> None:
        self.active = False

    def visibility_changed(self, hidden: bool) -> bool:
        if hidden:
            return self._raise(VISIBILITY_CHANGE, {"hidden": True})
        return False

    def key_pressed(self, key: str, ctrl: bool = False, shift: bool = False,
                    alt: bool = False, meta: bool = False) -> bool:
        reason = classify_key(key, ctrl=ctrl, shift=shift, alt=alt, meta=meta)
        if reason is None:
            return False
        return self._raise(reason, {"key": key, "ctrl": ctrl, "shift": shift, "alt": alt})

    def context_menu(self) -> bool:
        return self._raise(CONTEXT_MENU)

    def window_dimensions(self, outer_width: int, outer_height: int,
                          inner_width: int, inner_height: int) -> bool:
        if exceeds_devtools_threshold(outer_width, outer_height,
                                      inner_width, inner_height, self.threshold):
            return self._raise(DEVTOOLS_RESIZE_HEURISTIC, {
                "outer": [outer_width, outer_height],
                "inner": [inner_width, inner_height],
            })
        return False

    def _raise(self, reason: str, details: dict = None) -> bool:
        """Fire on_violation for the first violation only. Returns True if it fired."""
        if not self.active:
            return False
        if self.violation_triggered:
            log_with_context(logger, "DEBUG", "Ignoring violation after the first",
                             context=self.context, extra_data={"reason": reason})
            return False

        self.violation_triggered = True
        self.violation_reason = reason
        log_with_context(logger, "WARNING", "Integrity violation: {}".format(reason),
                         context=self.context, extra_data=details or {})
        self.on_violation(reason)
        return True
