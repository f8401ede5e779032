# task_references.py — Detects card references (#12, task-12, [task: 12]) in commit and PR text
import re
from dataclasses import dataclass
from typing import List, Optional

# Longer texts are truncated before scanning
MAX_SCAN_LENGTH = 10_000
MAX_CONTEXT_LENGTH = 150

TASK_REFERENCE_PATTERNS = [
    re.compile(r"(?<![\w&])#(\d+)\b"),                          # #123
    re.compile(r"\b(task)[- ]?#?(\d+)\b", re.IGNORECASE),       # task-123, TASK 123, task #123
    re.compile(r"\[(task)[:\s]\s*(\d+)\]", re.IGNORECASE),      # [task: 123]
    re.compile(r"\((task)[:\s]\s*(\d+)\)", re.IGNORECASE),      # (task: 123)
]

CARD_ID_PATTERN = re.compile(r"(?:card-|pr-|task-|#)?(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class TaskReference:
    card_id: str
    context: str
    source_type: str
    source_url: Optional[str] = None
    source_sha: Optional[str] = None
    prefix: Optional[str] = None
    full_match: str = ""


def _line_context(text: str, index: int) -> str:
    start = text.rfind("\n", 0, index) + 1
    end = text.find("\n", index)
    if end == -1:
        end = len(text)
    return text[start:end].strip()[:MAX_CONTEXT_LENGTH]


def parse_task_references(
    text: Optional[str],
    source_type: str,
    source_url: Optional[str] = None,
    source_sha: Optional[str] = None,
) -> List[TaskReference]:
    """Return one TaskReference per distinct card id mentioned in ``text``.

    References are ordered by their first position in the text. Text with
    no recognisable reference (or no text at all) gives an empty list.
    """
    if not text or not isinstance(text, str):
        return []
    text = text[:MAX_SCAN_LENGTH]

    found = {}
    for pattern in TASK_REFERENCE_PATTERNS:
        for match in pattern.finditer(text):
            card_id = match.group(match.lastindex)
            index = match.start()
            if card_id in found and found[card_id][0] <= index:
                continue
            prefix = match.group(1) if match.lastindex > 1 else None
            found[card_id] = (index, prefix, match.group(0))

    references = []
    for card_id, (index, prefix, full_match) in sorted(found.items(), key=lambda item: item[1][0]):
        references.append(TaskReference(
            card_id=card_id,
            context=_line_context(text, index),
            source_type=source_type,
            source_url=source_url,
            source_sha=source_sha,
            prefix=prefix,
            full_match=full_match,
        ))
    return references


def card_reference_key(card_id: Optional[str]) -> Optional[str]:
    """Numeric key a card can be referenced by: "pr-12" -> "12", "12" -> "12".

    The whole id must match; ids such as uuids or "abc12" have no key.
    """
    if not card_id:
        return None
    match = CARD_ID_PATTERN.fullmatch(card_id.strip())
    return match.group(1) if match else None


def matches_task_reference(card_id: Optional[str], reference: TaskReference) -> bool:
    """True when ``reference`` identifies the card ``card_id`` exactly."""
    key = card_reference_key(card_id)
    return key is not None and key == reference.card_id


def format_task_reference(reference: TaskReference) -> str:
    if reference.prefix:
        return f"{reference.prefix}-{reference.card_id}"
    return f"#{reference.card_id}"
