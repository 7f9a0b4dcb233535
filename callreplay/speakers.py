"""
Speaker roles shared by replay and live transcript.

The call event source tags turns as "assistant" (the AI prospect) or "user"
(the salesperson practising). Anything unrecognised is treated as the user.
"""
from __future__ import annotations

from typing import Literal

Speaker = Literal["user", "prospect"]

USER: Speaker = "user"
PROSPECT: Speaker = "prospect"

_ROLE_TO_SPEAKER: dict[str, Speaker] = {
    "assistant": PROSPECT,
    "prospect": PROSPECT,
    "user": USER,
}


def role_to_speaker(role: str | None) -> Speaker:
    """Map an event-source role tag to a Speaker; unknown or missing -> user."""
    return _ROLE_TO_SPEAKER.get((role or "").strip().lower(), USER)
