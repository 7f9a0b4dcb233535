"""
Transcript text -> timestamped segment rows.

Stored call transcripts have one utterance per line, prefixed with the speaker:
    You said: Hi, is this a good time?
    Prospect said: Not really, who is this?
Real timings are not recorded, so each utterance gets an estimated reading
duration and utterances are laid out back to back with a fixed gap.
"""
from __future__ import annotations

import re
from typing import Any

from callreplay.speakers import PROSPECT, USER, Speaker

USER_PREFIX = "You said:"
PROSPECT_PREFIX = "Prospect said:"

MIN_SEGMENT_SECONDS = 2.0
SECONDS_PER_CHAR = 0.05
SEGMENT_GAP_SECONDS = 0.5

_PREFIX_RE = re.compile(rf"^({re.escape(PROSPECT_PREFIX)}|{re.escape(USER_PREFIX)})\s*")


def estimate_duration(text: str) -> float:
    """Estimated reading time in seconds: max(2, len(text) * 0.05)."""
    return max(MIN_SEGMENT_SECONDS, len(text) * SECONDS_PER_CHAR)


def format_transcript_line(speaker: Speaker, text: str) -> str:
    """Inverse of parsing: one stored transcript line for this speaker."""
    prefix = PROSPECT_PREFIX if speaker == PROSPECT else USER_PREFIX
    return f"{prefix} {text.strip()}"


def parse_transcript_with_timestamps(transcript: str) -> list[dict[str, Any]]:
    """
    Parse speaker-prefixed lines into segment rows
    {index, speaker, text, timestamp, duration}. Lines without a known
    prefix are skipped; index is the line's position among non-blank lines.
    """
    lines = [line.strip() for line in (transcript or "").split("\n") if line.strip()]
    rows: list[dict[str, Any]] = []
    current_time = 0.0
    for i, line in enumerate(lines):
        match = _PREFIX_RE.match(line)
        if not match:
            continue
        speaker: Speaker = PROSPECT if match.group(1) == PROSPECT_PREFIX else USER
        text = line[match.end() :]
        duration = estimate_duration(text)
        rows.append(
            {
                "index": i,
                "speaker": speaker,
                "text": text,
                "timestamp": current_time,
                "duration": duration,
            }
        )
        current_time += duration + SEGMENT_GAP_SECONDS
    return rows
