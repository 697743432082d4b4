"""
MCP stdio server for oogvault: conversation recall tools for AI agents.

Exposes Vault operations as MCP tools so local agents can save
conversations and ask "have I asked this before?".

Usage:
    oogvault mcp                    # stdio server (via CLI)

All Vault calls are serialized through a single asyncio.Lock.
"""

import asyncio
import os
from pathlib import Path
from typing import Annotated, Any, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import Vault
from .config import STORE_PATH_ENV
from .export import conversation_markdown
from .store import StoreError

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "oogvault",
    instructions=(
        "Local vault of past chat conversations. "
        "Save conversations, search them by keywords, and check whether "
        "a question was already asked and answered."
    ),
)

_vault: Optional[Vault] = None
_lock = asyncio.Lock()


def _get_vault() -> Vault:
    """Lazy-init Vault with default config (respects OOGVAULT_STORE_PATH env).

    Must be called inside ``async with _lock``.
    """
    global _vault
    if _vault is None:
        store_path = os.environ.get(STORE_PATH_ENV)
        _vault = Vault(Path(store_path) if store_path else None)
    return _vault


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_IDEMPOTENT = ToolAnnotations(idempotentHint=True, destructiveHint=False)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=True)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Save a conversation (replacing any earlier save with the same id). "
        "Q&A nuggets are extracted automatically."
    ),
    annotations=_IDEMPOTENT,
)
async def vault_save(
    conversation: Annotated[dict[str, Any], Field(
        description=(
            'Conversation payload: {"id", "platform", "title", "url", '
            '"messages": [{"role": "user"|"assistant", "content", "timestamp"}]}'
        ),
    )],
) -> str:
    """Save a conversation."""
    async with _lock:
        vault = _get_vault()
        try:
            saved = await vault.ingest(conversation)
        except (ValueError, StoreError) as e:
            return f"Error: {e}"
    return f"Saved: {saved.id} ({len(saved.messages)} messages)"


@mcp.tool(
    description="Retrieve a saved conversation as Markdown, with its tags.",
    annotations=_READ_ONLY,
)
async def vault_get(
    id: Annotated[str, Field(description="Conversation ID.")],
) -> str:
    """Retrieve a conversation."""
    async with _lock:
        vault = _get_vault()
        conv = await vault.get_conversation(id)
        tags = await vault.get_tags(id) if conv is not None else []

    if conv is None:
        return f"Not found: {id}"
    text = conversation_markdown(conv)
    if tags:
        text += f"\nTags: {', '.join(tags)}\n"
    return text


@mcp.tool(
    description="List saved conversations, most recently updated first.",
    annotations=_READ_ONLY,
)
async def vault_list(
    limit: Annotated[int, Field(description="Max results to return.")] = 20,
) -> str:
    """List conversations."""
    async with _lock:
        conversations = await _get_vault().list_conversations()

    if not conversations:
        return "No conversations saved."
    return "\n".join(
        f"- {c.id}  {c.updated_at[:10]}  {c.platform}  {c.title}"
        for c in conversations[:limit]
    )


@mcp.tool(
    description="Permanently delete a conversation with its messages, tags and nuggets.",
    annotations=_DESTRUCTIVE,
)
async def vault_delete(
    id: Annotated[str, Field(description="Conversation ID to delete.")],
) -> str:
    """Delete a conversation."""
    async with _lock:
        deleted = await _get_vault().delete_conversation(id)
    return f"Deleted: {id}" if deleted else f"Not found: {id}"


@mcp.tool(
    description=(
        "Search saved conversations by keywords. Matches titles and message "
        "text approximately, tolerating typos."
    ),
    annotations=_READ_ONLY,
)
async def vault_search(
    query: Annotated[str, Field(description="Search keywords.")],
    limit: Annotated[int, Field(description="Max results to return.")] = 10,
) -> str:
    """Search conversations."""
    async with _lock:
        results = await _get_vault().search(query, limit)

    if not results:
        return "No results found."
    lines = []
    for r in results:
        snippet = " ".join(r.matched_content.split())
        lines.append(f"- [{r.score:.2f}] {r.conversation.id}  {r.conversation.title}\n  {snippet}")
    return "\n".join(lines)


@mcp.tool(
    description=(
        "Check whether a question was asked before. Returns earlier similar "
        "questions with a preview of the answer they got."
    ),
    annotations=_READ_ONLY,
)
async def vault_similar(
    query: Annotated[str, Field(description="The question being asked.")],
    limit: Annotated[int, Field(description="Max results to return.")] = 5,
) -> str:
    """Find similar past questions."""
    async with _lock:
        vault = _get_vault()
        if not vault.config.settings.autocomplete_enabled:
            return "Similar-question suggestions are disabled in settings."
        results = await vault.search_similar(query, limit)

    if not results:
        return "No similar questions found."
    lines = []
    for r in results:
        lines.append(f"- [{r.score:.2f}] Q: {r.question}")
        if r.answer:
            lines.append(f"  A: {r.answer}")
        lines.append(f"  ({r.source}: {r.conversation_id})")
    return "\n".join(lines)


@mcp.tool(
    description="Add or remove tags on a saved conversation.",
    annotations=_IDEMPOTENT,
)
async def vault_tag(
    id: Annotated[str, Field(description="Conversation ID.")],
    add: Annotated[Optional[list[str]], Field(description="Tags to add.")] = None,
    remove: Annotated[Optional[list[str]], Field(description="Tags to remove.")] = None,
) -> str:
    """Update tags on a conversation."""
    async with _lock:
        vault = _get_vault()
        if await vault.get_conversation(id) is None:
            return f"Not found: {id}"
        try:
            for t in add or []:
                await vault.add_tag(id, t)
            for t in remove or []:
                await vault.remove_tag(id, t)
        except ValueError as e:
            return f"Error: {e}"
        tags = await vault.get_tags(id)

    return f"Tags for {id}: {', '.join(tags) if tags else '(none)'}"


@mcp.tool(
    description=(
        "Search knowledge nuggets (question/answer pairs extracted from saved "
        "conversations). Without a query, lists the newest nuggets."
    ),
    annotations=_READ_ONLY,
)
async def vault_nuggets(
    query: Annotated[Optional[str], Field(description="Search keywords.")] = None,
    limit: Annotated[int, Field(description="Max results to return.")] = 10,
) -> str:
    """Search or list nuggets."""
    async with _lock:
        vault = _get_vault()
        if query:
            items = await vault.search_nuggets(query, limit)
        else:
            items = (await vault.list_nuggets())[:limit]

    if not items:
        return "No nuggets found."
    return "\n".join(f"- Q: {n.question}\n  A: {n.answer}" for n in items)


@mcp.tool(
    description="Count saved conversations, messages and nuggets.",
    annotations=_READ_ONLY,
)
async def vault_stats() -> str:
    """Vault statistics."""
    async with _lock:
        s = await _get_vault().stats()
    return f"{s.conversations} conversations, {s.messages} messages, {s.nuggets} nuggets"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import signal
    # anyio's stdin reader shields the blocking readline from cancellation,
    # so the first Ctrl+C would not stop the server.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
