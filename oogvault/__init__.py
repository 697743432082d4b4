"""
OogVault

A local vault of chat conversations with fuzzy recall: search past
conversations, get "you asked this before" suggestions while typing,
and browse Q&A nuggets extracted from every saved exchange.

Quick Start:
    from oogvault import Vault

    async with Vault() as vault:
        await vault.ingest({
            "id": "chat-1",
            "platform": "claude",
            "title": "Debugging a race condition",
            "messages": [
                {"role": "user", "content": "Why does my scheduler deadlock?"},
                {"role": "assistant", "content": "Two workers take the locks in opposite order."},
            ],
        })
        results = await vault.search("scheduler deadlock")

CLI Usage:
    oogvault save conversation.json
    oogvault search "race condition"
    oogvault similar "why does my scheduler hang"

Default Store:
    ~/.oogvault/ (created automatically).
    Override with OOGVAULT_STORE_PATH or an explicit path argument.

Environment Variables:
    OOGVAULT_STORE_PATH  - Override default store location
    OOGVAULT_VERBOSE     - Set to 1 for debug logging to stderr
"""

from .api import Vault
from .config import SearchConfig, Settings, VaultConfig
from .matching import fuzzy_score, relevance_score
from .retrieval import Retriever, extract_nuggets
from .store import ConversationStore, StoreError
from .text import extract_keywords, levenshtein, tokenize
from .types import (
    Conversation,
    ConversationMatch,
    Message,
    Nugget,
    SimilarQuestion,
    StoreStats,
)

__version__ = "0.1.0"
__all__ = [
    "Vault",
    "ConversationStore",
    "StoreError",
    "Retriever",
    "extract_nuggets",
    "fuzzy_score",
    "relevance_score",
    "tokenize",
    "extract_keywords",
    "levenshtein",
    "Conversation",
    "ConversationMatch",
    "Message",
    "Nugget",
    "SimilarQuestion",
    "StoreStats",
    "SearchConfig",
    "Settings",
    "VaultConfig",
]
