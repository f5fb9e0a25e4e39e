"""Outbound message composition with topic, bounded context and brevity directives.

Composition is a pure function of (history, config, latest_text, from_index).
"""

from __future__ import annotations

from collections.abc import Sequence

from chatbridge.models.conversation import ConversationConfig, HistoryEntry, TemplateType

DEFAULT_WORD_LIMIT = 200

TEMPLATE_WORD_LIMITS: dict[TemplateType, int] = {
    TemplateType.DEBATE: 200,
    TemplateType.STORY: 100,
    TemplateType.QA: 100,
    TemplateType.BRAINSTORM: 100,
}

RULE = "-" * 40
EARLY_HISTORY_LEN = 2
CONTEXT_CHAR_CAP = 200
CHARS_PER_WORD = 5


def word_limit_for(template_id: TemplateType | None) -> int:
    if template_id is None:
        return DEFAULT_WORD_LIMIT
    return TEMPLATE_WORD_LIMITS.get(template_id, DEFAULT_WORD_LIMIT)


def truncate(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "..."


def _topic_block(config: ConversationConfig, latest_text: str) -> str:
    topic = config.initial_prompt.strip()
    # The opening message already is the topic.
    if not topic or latest_text.strip() == topic:
        return ""
    return f"MAIN TOPIC:\n{topic}\n\n{RULE}\n\n"


def _directives(word_limit: int) -> str:
    return (
        f"{RULE}\n"
        "RULES FOR YOUR REPLY:\n"
        f"- Keep it short: 2-4 sentences, at most {word_limit} words.\n"
        "- Make one point, not a list.\n"
        "- Stay focused on the main topic above.\n"
        "Continue the discussion from the context above."
    )


def compose(
    history: Sequence[HistoryEntry],
    config: ConversationConfig,
    latest_text: str,
    from_index: int | None = None,
) -> str:
    """Build the message sent to the next participant.

    *history* already contains the entry for *latest_text* when called from
    the response loop; that newest entry is excluded from the context block.
    """
    word_limit = word_limit_for(config.template_id)
    topic = _topic_block(config, latest_text)

    if len(history) <= EARLY_HISTORY_LEN:
        return (
            f"{topic}{latest_text}\n\n"
            f"NOTE: Keep your reply short (2-4 sentences, under {word_limit} words)."
        )

    parts = [topic]
    window = config.context_window_size
    recent = list(history[-(window + 1):-1]) if window > 0 else []
    if recent:
        cap = min(word_limit * CHARS_PER_WORD, CONTEXT_CHAR_CAP)
        parts.append(f"RECENT CONTEXT:\n{RULE}\n")
        for entry in recent:
            parts.append(f"{entry.role}: {truncate(entry.content, cap)}\n\n")
        parts.append(f"{RULE}\n")
    parts.append(f"LATEST MESSAGE:\n\n{latest_text}\n\n")
    parts.append(_directives(word_limit))
    return "".join(parts)
