"""
Tests for the Retriever and nugget extraction.

Scenarios run against a real temporary store.
"""

import pytest
import pytest_asyncio

import oogvault.retrieval as retrieval_mod
from oogvault.config import SearchConfig
from oogvault.retrieval import (
    SOURCE_CONVERSATION,
    SOURCE_NUGGET,
    Retriever,
    extract_nuggets,
)
from oogvault.types import Message, Nugget

from tests.conftest import make_conversation


@pytest_asyncio.fixture
async def retriever(store):
    return Retriever(store)


async def _seed_race_and_bread(store):
    await store.save_conversation(make_conversation(
        id="race",
        title="Debugging a race condition in a scheduler",
        turns=[
            ("user", "My scheduler deadlocks under heavy load"),
            ("assistant", "Two workers acquire the locks in opposite order."),
        ],
    ))
    await store.save_conversation(make_conversation(
        id="bread",
        title="Baking sourdough bread",
        turns=[
            ("user", "What hydration for sourdough?"),
            ("assistant", "Around 75 percent works well."),
        ],
    ))


class TestExtractNuggets:

    def test_pairs_user_with_following_assistant(self):
        messages = [
            Message(role="user", content="  What is a race condition?  ", conversation_id="c",
                    timestamp="2026-01-01T10:00:00+00:00"),
            Message(role="assistant", content="Unsynchronized access to shared state."),
        ]
        nuggets = extract_nuggets(messages, "claude")
        assert len(nuggets) == 1
        assert nuggets[0].question == "What is a race condition?"
        assert nuggets[0].answer == "Unsynchronized access to shared state."
        assert nuggets[0].conversation_id == "c"
        assert nuggets[0].platform == "claude"
        assert nuggets[0].created_at == "2026-01-01T10:00:00+00:00"

    def test_trailing_short_user_turn_yields_nothing(self):
        messages = [
            Message(role="user", content="What is X, tell me more please"),
            Message(role="assistant", content="X is a placeholder name."),
            Message(role="user", content="short"),
        ]
        nuggets = extract_nuggets(messages, "chatgpt")
        assert len(nuggets) == 1
        assert nuggets[0].question == "What is X, tell me more please"

    def test_skips_short_question_and_short_answer(self):
        messages = [
            Message(role="user", content="hi there"),
            Message(role="assistant", content="Hello! How can I help?"),
            Message(role="user", content="Is the sky blue today?"),
            Message(role="assistant", content="Yes"),
        ]
        assert extract_nuggets(messages) == []

    def test_skips_user_without_direct_reply(self):
        messages = [
            Message(role="user", content="First question without reply"),
            Message(role="user", content="Second question with a reply"),
            Message(role="assistant", content="Here is the reply."),
            Message(role="user", content="Trailing question at the end"),
        ]
        nuggets = extract_nuggets(messages)
        assert [n.question for n in nuggets] == ["Second question with a reply"]

    def test_truncates_long_text(self):
        messages = [
            Message(role="user", content="q" * 400),
            Message(role="assistant", content="a" * 800),
        ]
        nugget = extract_nuggets(messages)[0]
        assert len(nugget.question) == 300
        assert len(nugget.answer) == 500

    def test_platform_defaults_to_empty(self):
        messages = [
            Message(role="user", content="A long enough question"),
            Message(role="assistant", content="An answer"),
        ]
        assert extract_nuggets(messages)[0].platform == ""


class TestSearchConversations:

    @pytest.mark.asyncio
    async def test_finds_relevant_not_unrelated(self, store, retriever):
        await _seed_race_and_bread(store)
        results = await retriever.search_conversations("race condition scheduler")

        assert [r.conversation.id for r in results] == ["race"]
        assert results[0].score == 1.0
        assert results[0].matched_content == "Debugging a race condition in a scheduler"
        assert len(results[0].conversation.messages) == 2

    @pytest.mark.asyncio
    async def test_matches_message_content(self, store, retriever):
        await store.save_conversation(make_conversation(
            id="ws",
            turns=[("user", "The websocket handshake fails behind nginx")],
        ))
        results = await retriever.search_conversations("websocket handshake")

        assert len(results) == 1
        assert results[0].matched_content == "The websocket handshake fails behind nginx"

    @pytest.mark.asyncio
    async def test_snippet_truncated(self, store, retriever):
        long_message = "websocket handshake " + "x" * 500
        await store.save_conversation(make_conversation(turns=[("user", long_message)]))
        results = await retriever.search_conversations("websocket handshake")
        assert results[0].matched_content == long_message[:200]

    @pytest.mark.asyncio
    async def test_sorted_and_limited(self, store, retriever):
        await store.save_conversation(make_conversation(
            id="partial", title="python basics",
        ))
        await store.save_conversation(make_conversation(
            id="exact", title="python asyncio websockets guide",
        ))
        await store.save_conversation(make_conversation(
            id="other", title="python asyncio notes",
        ))

        results = await retriever.search_conversations("python asyncio websockets")
        assert results[0].conversation.id == "exact"
        assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

        limited = await retriever.search_conversations("python asyncio websockets", limit=1)
        assert [r.conversation.id for r in limited] == ["exact"]

    @pytest.mark.asyncio
    async def test_blank_query(self, store, retriever):
        await _seed_race_and_bread(store)
        assert await retriever.search_conversations("") == []
        assert await retriever.search_conversations("   ") == []

    @pytest.mark.asyncio
    async def test_scoring_failure_skips_one_record(self, store, retriever, monkeypatch):
        await _seed_race_and_bread(store)
        await store.save_conversation(make_conversation(
            id="boom", title="race condition boom",
        ))
        real_score = retrieval_mod.fuzzy_score

        def flaky_score(query, text):
            if "boom" in text:
                raise RuntimeError("corrupt record")
            return real_score(query, text)

        monkeypatch.setattr(retrieval_mod, "fuzzy_score", flaky_score)
        results = await retriever.search_conversations("race condition")
        assert [r.conversation.id for r in results] == ["race"]

    @pytest.mark.asyncio
    async def test_threshold_from_config(self, store):
        await store.save_conversation(make_conversation(
            title="how to rollback a release",
        ))
        query = "kubernetes deployment rollback"  # scores 0.4

        assert len(await Retriever(store).search_conversations(query)) == 1
        strict = Retriever(store, SearchConfig(conversation_threshold=0.5))
        assert await strict.search_conversations(query) == []


class TestSearchSimilarQuestions:

    @pytest.mark.asyncio
    async def test_returns_question_with_answer(self, store, retriever):
        await store.save_conversation(make_conversation(
            id="nginx",
            title="Nginx setup",
            platform="chatgpt",
            turns=[
                ("user", "How do I configure nginx as a reverse proxy for websockets?"),
                ("assistant", "Set proxy_pass and forward the Upgrade and Connection headers."),
            ],
        ))
        results = await retriever.search_similar_questions("configure nginx websockets")

        assert len(results) == 1
        hit = results[0]
        assert hit.source == SOURCE_CONVERSATION
        assert hit.question == "How do I configure nginx as a reverse proxy for websockets?"
        assert hit.answer == "Set proxy_pass and forward the Upgrade and Connection headers."
        assert hit.conversation_id == "nginx"
        assert hit.conversation_title == "Nginx setup"
        assert hit.platform == "chatgpt"
        assert hit.timestamp == "2026-01-01T10:00:00+00:00"
        assert hit.score == 1.0

    @pytest.mark.asyncio
    async def test_gate_rejects_short_substring_match(self, store, retriever):
        await store.save_conversation(make_conversation(
            turns=[("user", "Fixing my bicycle chain keeps slipping")],
        ))
        assert await retriever.search_similar_questions("how do I fix a") == []

    @pytest.mark.asyncio
    async def test_short_or_filler_query(self, store, retriever):
        await store.save_conversation(make_conversation(
            turns=[("user", "nginx reverse proxy configuration")],
        ))
        assert await retriever.search_similar_questions("nginx") == []
        assert await retriever.search_similar_questions("the and of you") == []

    @pytest.mark.asyncio
    async def test_only_user_messages_considered(self, store, retriever):
        await store.save_conversation(make_conversation(turns=[
            ("user", "Something unrelated entirely"),
            ("assistant", "Configure nginx websockets with proxy_pass"),
        ]))
        assert await retriever.search_similar_questions("configure nginx websockets") == []

    @pytest.mark.asyncio
    async def test_no_answer_without_assistant_reply(self, store, retriever):
        await store.save_conversation(make_conversation(turns=[
            ("user", "configure nginx websockets please"),
            ("user", "anyone?"),
        ]))
        results = await retriever.search_similar_questions("configure nginx websockets")
        assert results[0].answer is None

    @pytest.mark.asyncio
    async def test_duplicates_collapsed(self, store, retriever):
        question = "How do I configure nginx as a reverse proxy for websockets?"
        for cid in ("a", "b"):
            await store.save_conversation(make_conversation(
                id=cid, turns=[("user", question), ("assistant", "proxy_pass")],
            ))
        await store.save_nuggets("a", [Nugget(question=question, answer="proxy_pass")])

        results = await retriever.search_similar_questions("configure nginx websockets")
        assert len(results) == 1
        assert results[0].source == SOURCE_CONVERSATION

    @pytest.mark.asyncio
    async def test_nugget_hits(self, store, retriever):
        await store.save_nuggets("gone", [Nugget(
            question="How to rotate nginx logs daily?",
            answer="Use logrotate with a daily stanza.",
            platform="gemini",
            created_at="2026-03-01T00:00:00+00:00",
        )])
        results = await retriever.search_similar_questions("rotate nginx logs")

        assert len(results) == 1
        hit = results[0]
        assert hit.source == SOURCE_NUGGET
        assert hit.answer == "Use logrotate with a daily stanza."
        assert hit.conversation_id == "gone"
        assert hit.conversation_title == "How to rotate nginx logs daily?"
        assert hit.platform == "gemini"
        assert hit.timestamp == "2026-03-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_limit(self, store, retriever):
        for i in range(8):
            await store.save_conversation(make_conversation(
                id=f"c{i}", turns=[("user", f"configure nginx websockets variant {i}")],
            ))
        results = await retriever.search_similar_questions("configure nginx websockets")
        assert len(results) == 5
        assert len(await retriever.search_similar_questions("configure nginx websockets", limit=2)) == 2


class TestSearchNuggetsText:

    @pytest_asyncio.fixture
    async def seeded(self, store):
        await store.save_nuggets("list", [Nugget(
            question="How to reverse a list in Python",
            answer="Use slicing [::-1] or reversed()",
        )])
        await store.save_nuggets("dict", [Nugget(
            question="Sorting dictionaries",
            answer="Use sorted with a key function on python dict items",
        )])
        await store.save_nuggets("bread", [Nugget(
            question="Bread baking temperature",
            answer="Bake at 230C",
        )])

    @pytest.mark.asyncio
    async def test_question_match(self, seeded, retriever):
        results = await retriever.search_nuggets_text("reverse python list")
        assert [n.question for n in results] == ["How to reverse a list in Python"]
        assert results[0].score == 1.0

    @pytest.mark.asyncio
    async def test_answer_match_weighted(self, seeded, retriever):
        results = await retriever.search_nuggets_text("python sorted")
        assert [n.question for n in results] == [
            "Sorting dictionaries",
            "How to reverse a list in Python",
        ]
        assert results[0].score == pytest.approx(0.8)
        assert results[1].score == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_no_match_and_blank(self, seeded, retriever):
        assert await retriever.search_nuggets_text("kubernetes") == []
        assert await retriever.search_nuggets_text("  ") == []
