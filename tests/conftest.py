"""
Shared pytest fixtures for oogvault tests.

Every store lives in a fresh tmp_path; nothing touches ~/.oogvault.
"""

import pytest
import pytest_asyncio

from oogvault.api import Vault
from oogvault.store import ConversationStore
from oogvault.types import Conversation, Message


def make_conversation(
    id: str = "conv-1",
    title: str = "Untitled conversation",
    platform: str = "claude",
    turns: list[tuple[str, str]] = (),
    start: int = 0,
) -> Conversation:
    """Build a conversation from (role, content) turns with increasing timestamps."""
    messages = [
        Message(
            role=role,
            content=content,
            timestamp=f"2026-01-01T10:00:{start + i:02d}+00:00",
        )
        for i, (role, content) in enumerate(turns)
    ]
    return Conversation(id=id, platform=platform, title=title, messages=messages)


@pytest.fixture(autouse=True)
def isolated_store_env(tmp_path, monkeypatch):
    """Keep default-path lookups inside the test directory."""
    monkeypatch.setenv("OOGVAULT_STORE_PATH", str(tmp_path / "default-store"))


@pytest_asyncio.fixture
async def store(tmp_path):
    """An open ConversationStore on a temporary database."""
    async with ConversationStore(tmp_path / "vault.db") as s:
        yield s


@pytest_asyncio.fixture
async def vault(tmp_path):
    """An open Vault in a temporary store directory."""
    async with Vault(tmp_path / "store") as v:
        yield v
