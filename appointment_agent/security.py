"""Screens inbound chat messages before the dialogue graph runs.

With ``SECURITY_FILTER_ENABLED`` on, every user message of a chat request
goes through resk-llm's heuristic prompt-injection filter. A blocked
request never reaches the graph; the caller hears a fixed refusal and the
call's state is left untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from appointment_agent.models.state import ChatMessage

log = logging.getLogger("appointment_agent.security")

# Same shape as resk-llm's ``filter_input``: (passed, reason, filtered_text).
Checker = Callable[[str], tuple[bool, Optional[str], str]]

DEFAULT_BLOCK_REASON = "Request blocked by security policy"


@dataclass
class ScreeningResult:
    allowed: bool
    reason: Optional[str] = None


def resk_checker() -> Checker:
    from resk_llm.heuristic_filter import HeuristicFilter

    return HeuristicFilter().filter_input


class InputScreen:
    """Prompt-injection screen over the user messages of one request.

    Args:
        enabled: When False every request is allowed without inspection.
        checker: Text check returning ``(passed, reason, filtered_text)``.
            Defaults to resk-llm's ``HeuristicFilter``, created on first use.
    """

    def __init__(self, enabled: bool, checker: Optional[Checker] = None) -> None:
        self.enabled = enabled
        self._checker = checker

    def _check(self, text: str) -> tuple[bool, Optional[str]]:
        if self._checker is None:
            self._checker = resk_checker()
        passed, reason, _ = self._checker(text)
        return passed, reason

    def screen(self, messages: Iterable[ChatMessage]) -> ScreeningResult:
        if not self.enabled:
            return ScreeningResult(allowed=True)
        for msg in messages:
            if msg.role != "user" or not msg.content.strip():
                continue
            passed, reason = self._check(msg.content)
            if not passed:
                log.warning("Blocked inbound message: %s", reason or DEFAULT_BLOCK_REASON)
                return ScreeningResult(allowed=False, reason=reason or DEFAULT_BLOCK_REASON)
        return ScreeningResult(allowed=True)
