"""
Markdown and JSON rendering of vault contents.

Pure functions over records read from the store.
"""

import json
from datetime import datetime
from typing import Any, Optional

from .types import ROLE_USER, Conversation, Message, Nugget, local_date, local_datetime

_RULE = "---"


def conversation_markdown(conversation: Conversation) -> str:
    """Render one conversation, messages in stored order."""
    lines = [
        f"# {conversation.title}",
        f"**Platform:** {conversation.platform} | **Date:** {local_datetime(conversation.created_at)}",
        "",
        _RULE,
        "",
    ]

    for msg in conversation.messages:
        role = "**You**" if msg.role == ROLE_USER else "**Assistant**"
        lines.append(f"### {role}")
        lines.append("")
        lines.append(msg.content)
        lines.append("")
        lines.append(_RULE)
        lines.append("")

    return "\n".join(lines)


def knowledge_markdown(nuggets: list[Nugget], now: Optional[datetime] = None) -> Optional[str]:
    """
    Render all nuggets as a knowledge base, grouped by platform.

    Groups appear in order of first occurrence, so with nuggets listed
    newest first the most recently active platform comes first.

    Returns:
        Markdown text, or None when there are no nuggets
    """
    if not nuggets:
        return None

    grouped: dict[str, list[Nugget]] = {}
    for nugget in nuggets:
        grouped.setdefault(nugget.platform or "General", []).append(nugget)

    generated = (now or datetime.now()).strftime("%Y-%m-%d %H:%M")
    lines = [
        "# OogVault Knowledge Base",
        "",
        f"> Auto-generated on {generated} · {len(nuggets)} knowledge nuggets",
        "",
        _RULE,
        "",
    ]

    for platform, items in grouped.items():
        lines.append(f"## {platform[:1].upper() + platform[1:]}")
        lines.append("")
        for nugget in items:
            lines.append(f"### Q: {nugget.question}")
            lines.append("")
            lines.append(f"**A:** {nugget.answer}")
            lines.append("")
            lines.append(f"_{local_date(nugget.created_at)}_")
            lines.append("")
            lines.append(_RULE)
            lines.append("")

    return "\n".join(lines)


def export_json(conversations: list[Conversation], tags: dict[str, list[str]]) -> str:
    """Full dump: every conversation with its messages and tags."""
    data: list[dict[str, Any]] = []
    for conv in conversations:
        d = conv.to_dict()
        d["tags"] = tags.get(conv.id, [])
        data.append(d)
    return json.dumps(data, indent=2, ensure_ascii=False)


def continuation_prompt(messages: list[Message]) -> Optional[str]:
    """
    Summarize a conversation so it can be continued elsewhere.

    Lists the user's topics and quotes the last four turns.

    Returns:
        Prompt text, or None for a conversation without messages
    """
    if not messages:
        return None

    topics = "\n".join(
        f"- {m.content[:100]}" for m in messages if m.role == ROLE_USER
    )
    last_exchange = "\n\n".join(
        f"{'User' if m.role == ROLE_USER else 'Assistant'}: {m.content[:200]}"
        for m in messages[-4:]
    )

    return "\n".join([
        "I'm continuing a previous conversation. Here's a summary:",
        "",
        "## Topics we discussed:",
        topics,
        "",
        "## Last exchange:",
        last_exchange,
        "",
        "Please continue from where we left off.",
    ])
