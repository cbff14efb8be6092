"""Contact mentions in chat text.

Splits message text into literal runs and contact references so callers
can render mentioned contacts distinctly. User messages reference contacts
as ``@Full Name``; assistant replies mention them by plain name.
"""

import re
from dataclasses import dataclass
from enum import Enum

from scribe_crm.integrations.domain import CRMProvider

_TRIGGER = re.compile(r"@(\w{2,})$")
_PARTIAL_MENTION = re.compile(r"@\w*$")


class MentionMode(str, Enum):
    """How contact names appear in the text being segmented."""

    TAGGED = "tagged"  # "@Jane Doe"
    PLAIN = "plain"  # "Jane Doe"


@dataclass(frozen=True)
class MentionCandidate:
    """A contact that may be mentioned."""

    name: str
    provider: CRMProvider | None = None
    external_id: str | None = None


@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class EntitySegment:
    name: str
    initials: str
    provider: CRMProvider | None = None
    external_id: str | None = None


Segment = TextSegment | EntitySegment


def contact_initials(name: str) -> str:
    """Upper-cased first letter of each name part: ``"John Doe"`` -> ``"JD"``."""
    return "".join(part[0] for part in name.split()).upper()


def detect_trigger(text: str) -> str | None:
    """Return the pending mention query when ``text`` ends in ``@`` plus 2+ word characters."""
    match = _TRIGGER.search(text)
    return match.group(1) if match else None


def replace_last_mention(text: str, full_name: str) -> str:
    """Replace the trailing partial ``@mention`` with ``@Full Name ``."""
    return _PARTIAL_MENTION.sub(lambda _: f"@{full_name} ", text, count=1)


def _name_variants(candidates: list[MentionCandidate]) -> list[tuple[str, MentionCandidate]]:
    """Full name and distinct first-name alias per candidate, longest first."""
    variants: list[tuple[str, MentionCandidate]] = []
    for candidate in candidates:
        name = candidate.name.strip()
        if not name:
            continue
        variants.append((name, candidate))
        first = name.split()[0]
        if first != name:
            variants.append((first, candidate))
    # Stable sort keeps earlier candidates ahead on equal-length collisions
    return sorted(variants, key=lambda v: -len(v[0]))


def segment(
    text: str,
    candidates: list[MentionCandidate],
    mode: MentionMode = MentionMode.TAGGED,
) -> list[Segment]:
    """Split ``text`` into literal and contact segments.

    Matching is case-insensitive on word boundaries; a full name wins over
    a first-name alias. Literal text keeps its original casing and empty
    literal runs are dropped.

    Args:
        text: Message text.
        candidates: Contacts that may be mentioned.
        mode: ``TAGGED`` requires an ``@`` immediately before the name.

    Returns:
        Ordered segments covering all of ``text``.
    """
    variants = _name_variants(candidates)
    if not variants:
        return [TextSegment(text)] if text else []

    lookup: dict[str, MentionCandidate] = {}
    for name, candidate in variants:
        lookup.setdefault(name.lower(), candidate)

    alternation = "|".join(re.escape(name) for name in dict.fromkeys(n for n, _ in variants))
    prefix = "@" if mode == MentionMode.TAGGED else r"(?<!\w)"
    pattern = re.compile(rf"{prefix}({alternation})(?!\w)", re.IGNORECASE)

    segments: list[Segment] = []
    position = 0
    for match in pattern.finditer(text):
        if match.start() > position:
            segments.append(TextSegment(text[position : match.start()]))
        candidate = lookup[match.group(1).lower()]
        segments.append(
            EntitySegment(
                name=candidate.name,
                initials=contact_initials(candidate.name),
                provider=candidate.provider,
                external_id=candidate.external_id,
            )
        )
        position = match.end()
    if position < len(text):
        segments.append(TextSegment(text[position:]))
    return segments
