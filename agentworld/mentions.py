"""Mention parsing and reply post-processing.

Only *leading* mentions address an agent: an ``@name`` token at the start of
the text or at the start of a line (after optional spaces or tabs). Mid-line
mentions are conversational references and never trigger a response.

Post-processing helpers used by the agent pipeline also live here:
self-mention stripping, auto-mention of the agent being replied to, world
tags (``<world>STOP</world>``, ``<world>TO: a,b</world>``) and the pass token.
"""

from __future__ import annotations

import re
from typing import List, Optional

# Name tokens: ASCII word characters joined by single hyphens/underscores
_NAME = r"\w+(?:[-_]\w+)*"

_LEADING_MENTION = re.compile(rf"^[ \t]*@({_NAME})", re.MULTILINE | re.ASCII)
_ANY_MENTION = re.compile(rf"@({_NAME})", re.ASCII)
_LEADING_MENTION_RUN = re.compile(rf"^([ \t]*)((?:@{_NAME}[,:]?[ \t]*)+)", re.MULTILINE | re.ASCII)
_WORLD_TAG = re.compile(r"<world>\s*(.*?)\s*</world>", re.IGNORECASE | re.DOTALL)

PASS_TOKEN = "<world>pass</world>"
HUMAN_SENDERS = frozenset({"human", "user", "you"})


def extract_leading_mentions(text: str) -> List[str]:
    """Return lowercase names of every leading ``@mention`` in ``text``.

    Args:
        text: Message content

    Returns:
        Names in the order they appear; empty when no line starts with a mention.
    """
    if not text:
        return []
    return [match.group(1).lower() for match in _LEADING_MENTION.finditer(text)]


def extract_mentions(text: str) -> List[str]:
    """Permissive extractor: the first ``@name`` anywhere in ``text``.

    Used for threading and diagnostics only, never for response triggering.
    """
    if not text:
        return []
    match = _ANY_MENTION.search(text)
    return [match.group(1).lower()] if match else []


def has_any_mention_at_beginning(text: str) -> bool:
    return bool(extract_leading_mentions(text))


def remove_mentions_from_paragraph_beginnings(text: str, specific: Optional[str] = None) -> str:
    """Strip leading mentions from the start of every line.

    Args:
        text: Message content
        specific: When given, only strip runs made entirely of this name

    Returns:
        Text with the leading mention runs removed (indentation preserved).
    """
    if not text:
        return text
    target = specific.lower() if specific else None

    def _strip(match: re.Match) -> str:
        indent, run = match.group(1), match.group(2)
        if target is not None:
            names = {name.lower() for name in _ANY_MENTION.findall(run)}
            if names != {target}:
                return match.group(0)
        return indent

    return _LEADING_MENTION_RUN.sub(_strip, text)


def remove_self_mentions(text: str, agent_id: str) -> str:
    """Remove consecutive leading ``@agent_id`` mentions from each paragraph."""
    if not text or not agent_id:
        return text
    own = re.compile(rf"^([ \t]*)(?:@{re.escape(agent_id)}(?![\w-])[,:]?[ \t]*)+", re.MULTILINE | re.IGNORECASE)
    return own.sub(lambda match: match.group(1), text).strip()


def is_human_sender(sender: str) -> bool:
    lowered = (sender or "").strip().lower()
    return lowered in HUMAN_SENDERS or lowered.startswith("user")


def should_auto_mention(response: str, sender: str, agent_id: str) -> bool:
    """Whether a reply to ``sender`` should be prefixed with ``@sender``.

    False when replying to a human or to the agent itself, or when the reply
    already opens with a mention of someone other than the agent.
    """
    if not response or not response.strip() or not sender:
        return False
    if is_human_sender(sender):
        return False
    if sender.lower() == (agent_id or "").lower():
        return False
    others = [name for name in extract_leading_mentions(response) if name != (agent_id or "").lower()]
    return not others


def _parse_world_tag(text: str) -> tuple[str, Optional[str]]:
    """Return the text without world tags plus the first tag's directive."""
    directive: Optional[str] = None
    match = _WORLD_TAG.search(text)
    if match:
        directive = match.group(1).strip()
    return _WORLD_TAG.sub("", text).strip(), directive


def add_auto_mention(response: str, sender: str) -> str:
    """Prefix ``response`` with ``@sender`` unless it already addresses someone.

    World tags take precedence:
        ``<world>STOP|DONE|PASS</world>`` strips all leading mentions and adds none.
        ``<world>TO: a, b</world>`` replaces leading mentions with ``@a`` / ``@b`` lines.
    """
    if not response:
        return response

    body, directive = _parse_world_tag(response)
    if directive is not None:
        upper = directive.upper()
        if upper in ("STOP", "DONE", "PASS"):
            return remove_mentions_from_paragraph_beginnings(body).strip()
        if upper.startswith("TO:"):
            recipients = [name.strip().lstrip("@") for name in directive[3:].split(",")]
            recipients = [name for name in recipients if name]
            stripped = remove_mentions_from_paragraph_beginnings(body).strip()
            if not recipients:
                return stripped
            header = "\n".join(f"@{name}" for name in recipients)
            return f"{header}\n\n{stripped}" if stripped else header
        response = body

    trimmed = response.strip()
    if not sender or has_any_mention_at_beginning(trimmed):
        return trimmed
    return f"@{sender} {trimmed}"


def is_pass_response(text: str) -> bool:
    """True when the whole trimmed output is the pass token."""
    return bool(text) and text.strip().lower() == PASS_TOKEN


def pass_notice(agent_id: str) -> str:
    return f"@human {agent_id} is passing control to you"


__all__ = [
    "PASS_TOKEN",
    "extract_leading_mentions",
    "extract_mentions",
    "has_any_mention_at_beginning",
    "remove_mentions_from_paragraph_beginnings",
    "remove_self_mentions",
    "is_human_sender",
    "should_auto_mention",
    "add_auto_mention",
    "is_pass_response",
    "pass_notice",
]
