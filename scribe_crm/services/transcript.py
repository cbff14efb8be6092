"""Render a recorded meeting into the transcript block used in AI prompts."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from scribe_crm.core.exceptions import TranscriptUnavailableError

logger = logging.getLogger(__name__)

UNKNOWN_SPEAKER = "Unknown Speaker"


@dataclass
class Participant:
    """A meeting attendee as reported by the recording service."""

    name: str | None
    participant_id: str | None = None
    is_host: bool = False


@dataclass
class Meeting:
    """Meeting data needed to build prompts.

    ``transcript`` holds the raw recording segments: each has a speaker
    (``speaker``, ``speaker_id`` or ``participant``) and ``words`` with
    ``text`` and ``start_timestamp``.
    """

    title: str
    recorded_at: datetime | None = None
    duration_seconds: int | None = None
    participants: list[Participant] = field(default_factory=list)
    transcript: list[dict[str, Any]] | None = None


def format_timestamp(seconds: float | None) -> str:
    """Format an offset in seconds as ``MM:SS`` (minutes may exceed 59)."""
    total = int(seconds or 0)
    minutes, secs = divmod(max(total, 0), 60)
    return f"{minutes:02d}:{secs:02d}"


def _start_seconds(value: Any) -> float | None:
    # Recall sends either a bare offset or {"relative": offset, "absolute": iso}
    if isinstance(value, dict):
        value = value.get("relative")
    if isinstance(value, int | float):
        return float(value)
    return None


def resolve_speaker(segment: dict[str, Any], participants_by_id: dict[str, str]) -> str:
    """Best available display name for a transcript segment's speaker.

    Order: explicit ``speaker`` name, then ``participant.name``, then
    ``speaker_id`` / ``participant.id`` looked up among the participants.
    """
    speaker = segment.get("speaker")
    if isinstance(speaker, str) and speaker:
        return speaker

    participant = segment.get("participant")
    participant_id: Any = None
    if isinstance(participant, dict):
        name = participant.get("name")
        if isinstance(name, str) and name:
            return name
        participant_id = participant.get("id")
    elif isinstance(participant, int | str):
        participant_id = participant

    speaker_id = segment.get("speaker_id")
    lookup_id = speaker_id if speaker_id is not None else participant_id
    if lookup_id is None:
        return UNKNOWN_SPEAKER
    return participants_by_id.get(str(lookup_id), UNKNOWN_SPEAKER)


def render_meeting_prompt(meeting: Meeting) -> str:
    """Render meeting metadata and a ``[MM:SS] Speaker: words`` transcript.

    Raises:
        TranscriptUnavailableError: If the meeting has no transcript or no participants.
    """
    if not meeting.transcript:
        raise TranscriptUnavailableError("Meeting has no transcript")
    if not meeting.participants:
        raise TranscriptUnavailableError("Meeting has no participants")

    participants_by_id = {
        p.participant_id: p.name or "Unknown Participant"
        for p in meeting.participants
        if p.participant_id is not None
    }

    lines = [f"Meeting: {meeting.title}"]
    if meeting.recorded_at is not None:
        lines.append(f"Date: {meeting.recorded_at.strftime('%Y-%m-%d %H:%M %Z').strip()}")
    if meeting.duration_seconds:
        lines.append(f"Duration: {max(meeting.duration_seconds // 60, 1)} minutes")

    lines.append("Participants:")
    for p in meeting.participants:
        suffix = " (Host)" if p.is_host else ""
        lines.append(f"- {p.name or 'Unknown Participant'}{suffix}")

    lines.append("")
    lines.append("Transcript:")
    for segment in meeting.transcript:
        words = [
            w
            for w in segment.get("words") or []
            if isinstance(w, dict) and isinstance(w.get("text"), str)
        ]
        text = " ".join(w["text"] for w in words).strip()
        if not text:
            continue
        start = _start_seconds(words[0].get("start_timestamp"))
        speaker = resolve_speaker(segment, participants_by_id)
        lines.append(f"[{format_timestamp(start)}] {speaker}: {text}")

    return "\n".join(lines)
