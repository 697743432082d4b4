"""
Core API for the conversation vault.

Vault is the ingestion boundary and the single entry point used by the
CLI and the MCP server:
- ingest(): save a conversation payload, then derive its nuggets
- search(), search_similar(), search_nuggets(): fuzzy retrieval
- export_*(): Markdown / JSON renderings of stored data
"""

import logging
from pathlib import Path
from typing import Any, Optional

from .config import VaultConfig, load_or_create_config
from .export import continuation_prompt, conversation_markdown, export_json, knowledge_markdown
from .logging_config import configure_ops_log, detach_ops_log
from .retrieval import Retriever, extract_nuggets
from .store import ConversationStore
from .types import (
    Conversation,
    ConversationMatch,
    Message,
    Nugget,
    SimilarQuestion,
    StoreStats,
)

logger = logging.getLogger(__name__)


class Vault:
    """
    Local conversation vault with fuzzy retrieval.

    Example:
        async with Vault() as vault:
            await vault.ingest({"id": "chat-1", "platform": "claude", "messages": [...]})
            results = await vault.search("race condition scheduler")
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[VaultConfig] = None,
        store: Optional[ConversationStore] = None,
    ) -> None:
        """
        Open (or create) a vault.

        Args:
            store_path: Store directory. Uses OOGVAULT_STORE_PATH or
                ~/.oogvault if not specified.
            config: Pre-loaded VaultConfig (skips filesystem config discovery).
            store: Injected store (skips default backend creation).
        """
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).expanduser().resolve() if store_path is not None else None
            self._config = load_or_create_config(path)

        self._store_path = self._config.path
        self._ops_log_handler = configure_ops_log(self._store_path)

        self._store = store if store is not None else ConversationStore(self._config.database_path)
        self._retriever = Retriever(self._store, self._config.search)

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def store_path(self) -> Path:
        return self._store_path

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def ingest(self, payload: dict[str, Any]) -> Conversation:
        """
        Save a conversation payload from a capture source.

        Payload shape: {id, platform, title, messages: [{role, content,
        timestamp?}], created_at?, updated_at?, url?}

        Raises:
            ValueError: malformed payload, invalid id or message role
            StoreError: the save failed
        """
        return await self.save_conversation(Conversation.from_dict(payload))

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """
        Save a conversation, then regenerate its nuggets.

        Nugget derivation is best-effort: a failure is logged and the
        saved conversation is returned regardless.
        """
        saved = await self._store.save_conversation(conversation)

        try:
            nuggets = extract_nuggets(saved.messages, saved.platform)
            if nuggets:
                await self._store.save_nuggets(saved.id, nuggets)
                logger.info("Extracted %d knowledge nuggets from %s", len(nuggets), saved.id)
        except Exception as e:
            logger.warning("Nugget extraction failed for %s (non-fatal): %s", saved.id, e)

        return saved

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    async def get_conversation(self, id: str) -> Optional[Conversation]:
        return await self._store.get_conversation(id)

    async def list_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first."""
        return await self._store.get_all_conversations()

    async def delete_conversation(self, id: str) -> bool:
        return await self._store.delete_conversation(id)

    async def clear(self) -> int:
        """Delete everything. Returns the number of conversations removed."""
        return await self._store.delete_all()

    async def get_messages(self, conversation_id: str) -> list[Message]:
        return await self._store.get_messages_for_conversation(conversation_id)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    async def add_tag(self, conversation_id: str, tag: str) -> bool:
        return await self._store.add_tag(conversation_id, tag)

    async def remove_tag(self, conversation_id: str, tag: str) -> bool:
        return await self._store.remove_tag(conversation_id, tag)

    async def get_tags(self, conversation_id: str) -> list[str]:
        return await self._store.get_tags_for_conversation(conversation_id)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search(self, query: str, limit: int = 20) -> list[ConversationMatch]:
        return await self._retriever.search_conversations(query, limit)

    async def search_similar(self, query: str, limit: int = 5) -> list[SimilarQuestion]:
        return await self._retriever.search_similar_questions(query, limit)

    async def search_nuggets(self, query: str, limit: int = 10) -> list[Nugget]:
        return await self._retriever.search_nuggets_text(query, limit)

    async def list_nuggets(self) -> list[Nugget]:
        """All nuggets, newest first."""
        return await self._store.get_all_nuggets()

    async def stats(self) -> StoreStats:
        return await self._store.get_stats()

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    async def export_markdown(self, conversation_id: str) -> Optional[str]:
        """Markdown for one conversation, or None if it does not exist."""
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is None:
            return None
        return conversation_markdown(conversation)

    async def export_knowledge(self) -> Optional[str]:
        """Markdown knowledge base of all nuggets, or None if there are none."""
        return knowledge_markdown(await self._store.get_all_nuggets())

    async def export_json(self) -> str:
        """JSON dump of every conversation with messages and tags."""
        conversations = []
        tags = {}
        for listed in await self._store.get_all_conversations():
            conversation = await self._store.get_conversation(listed.id)
            if conversation is None:
                continue  # deleted meanwhile
            conversations.append(conversation)
            tags[conversation.id] = await self._store.get_tags_for_conversation(conversation.id)
        return export_json(conversations, tags)

    async def continuation_prompt(self, conversation_id: str) -> Optional[str]:
        """Prompt text for continuing a conversation elsewhere."""
        messages = await self._store.get_messages_for_conversation(conversation_id)
        return continuation_prompt(messages)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the store and detach the operations log."""
        await self._store.close()
        detach_ops_log(self._ops_log_handler)
        self._ops_log_handler = None

    async def __aenter__(self) -> "Vault":
        await self._store.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
