"""
Retrieval over the conversation store.

- search_conversations(): which saved conversations talk about this?
- search_similar_questions(): have I asked this before? (live typing)
- search_nuggets_text(): which Q&A nuggets answer this?
- extract_nuggets(): derive Q&A nuggets from a sequence of turns

There is no persistent text index: every search scans the store.
"""

import logging
from itertools import groupby
from typing import Optional

from .config import SearchConfig
from .matching import fuzzy_score, relevance_score
from .store import ConversationStore
from .text import extract_keywords, tokenize
from .types import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationMatch,
    Message,
    Nugget,
    SimilarQuestion,
    utc_now,
)

logger = logging.getLogger(__name__)

# Nugget extraction limits
MIN_QUESTION_LENGTH = 10
MIN_ANSWER_LENGTH = 5
MAX_QUESTION_LENGTH = 300
MAX_ANSWER_LENGTH = 500

SOURCE_CONVERSATION = "conversation"
SOURCE_NUGGET = "nugget"


def extract_nuggets(messages: list[Message], platform: Optional[str] = None) -> list[Nugget]:
    """
    Pair each user message with the assistant reply that immediately follows it.

    Questions shorter than 10 characters and answers shorter than 5 (after
    trimming) are skipped, as is a user message with no assistant reply
    right after it.

    Args:
        messages: Turns in conversational order
        platform: Source platform recorded on each nugget

    Returns:
        Nuggets with question/answer truncated to 300/500 characters
    """
    nuggets = []
    now = utc_now()

    for i, msg in enumerate(messages):
        if msg.role != ROLE_USER:
            continue

        question = msg.content.strip()
        if len(question) < MIN_QUESTION_LENGTH:
            continue

        if i + 1 >= len(messages) or messages[i + 1].role != ROLE_ASSISTANT:
            continue

        answer = messages[i + 1].content.strip()
        if len(answer) < MIN_ANSWER_LENGTH:
            continue

        nuggets.append(Nugget(
            question=question[:MAX_QUESTION_LENGTH],
            answer=answer[:MAX_ANSWER_LENGTH],
            conversation_id=msg.conversation_id,
            platform=platform or "",
            created_at=msg.timestamp or now,
        ))

    return nuggets


class Retriever:
    """
    Fuzzy search over a ConversationStore.

    Storage errors propagate; a failure scoring one record is logged
    and that record skipped.
    """

    def __init__(self, store: ConversationStore, config: Optional[SearchConfig] = None):
        self._store = store
        self._config = config or SearchConfig()

    @property
    def config(self) -> SearchConfig:
        return self._config

    async def _messages_by_conversation(self) -> dict[str, list[Message]]:
        messages = await self._store.get_all_messages()
        return {
            conv_id: list(group)
            for conv_id, group in groupby(messages, key=lambda m: m.conversation_id)
        }

    async def search_conversations(self, query: str, limit: int = 20) -> list[ConversationMatch]:
        """
        Find conversations whose title or any message matches the query.

        Each conversation scores the best fuzzy_score over its title and
        message bodies; those above the threshold are returned best first
        with the snippet that matched.
        """
        if not query or not query.strip():
            return []

        cfg = self._config
        conversations = await self._store.get_all_conversations()
        messages = await self._messages_by_conversation()
        results = []

        for conv in conversations:
            conv.messages = messages.get(conv.id, [])
            try:
                best_score = 0.0
                matched = ""

                title_score = fuzzy_score(query, conv.title)
                if title_score > best_score:
                    best_score = title_score
                    matched = conv.title[:cfg.snippet_length]

                for msg in conv.messages:
                    msg_score = fuzzy_score(query, msg.content)
                    if msg_score > best_score:
                        best_score = msg_score
                        matched = msg.content[:cfg.snippet_length]
            except Exception as e:
                logger.warning("Skipping conversation %s in search: %s", conv.id, e)
                continue

            if best_score > cfg.conversation_threshold:
                results.append(ConversationMatch(
                    conversation=conv,
                    score=best_score,
                    matched_content=matched,
                ))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def search_similar_questions(self, query: str, limit: int = 5) -> list[SimilarQuestion]:
        """
        Find previously asked questions that resemble what is being typed.

        Scans user messages of every conversation, then stored nuggets.
        Input shorter than the minimum length, or made only of filler
        words, returns nothing.
        """
        cfg = self._config
        if not query or len(query.strip()) < cfg.similar_min_query_length:
            return []
        if not extract_keywords(query):
            return []

        conversations = await self._store.get_all_conversations()
        messages = await self._messages_by_conversation()
        results: list[SimilarQuestion] = []
        seen: set[str] = set()

        for conv in conversations:
            conv_messages = messages.get(conv.id, [])
            for i, msg in enumerate(conv_messages):
                if msg.role != ROLE_USER:
                    continue
                try:
                    score = fuzzy_score(query, msg.content)
                except Exception as e:
                    logger.warning("Skipping message %s in similar search: %s", msg.id, e)
                    continue
                if score <= cfg.similar_threshold:
                    continue

                key = msg.content[:cfg.dedup_key_length].lower()
                if key in seen:
                    continue
                seen.add(key)

                response = conv_messages[i + 1] if i + 1 < len(conv_messages) else None
                answer = None
                if response is not None and response.role == ROLE_ASSISTANT:
                    answer = response.content[:cfg.answer_preview_length]

                results.append(SimilarQuestion(
                    question=msg.content[:cfg.snippet_length],
                    answer=answer,
                    conversation_id=conv.id,
                    conversation_title=conv.title,
                    platform=conv.platform,
                    timestamp=msg.timestamp,
                    score=score,
                    source=SOURCE_CONVERSATION,
                ))

        for nugget in await self._store.get_all_nuggets():
            try:
                score = fuzzy_score(query, nugget.question)
            except Exception as e:
                logger.warning("Skipping nugget %s in similar search: %s", nugget.id, e)
                continue
            if score <= cfg.similar_threshold:
                continue

            key = nugget.question[:cfg.dedup_key_length].lower()
            if key in seen:
                continue
            seen.add(key)

            results.append(SimilarQuestion(
                question=nugget.question[:cfg.snippet_length],
                answer=nugget.answer[:cfg.answer_preview_length] if nugget.answer else None,
                conversation_id=nugget.conversation_id,
                conversation_title=nugget.question[:60],
                platform=nugget.platform,
                timestamp=nugget.created_at,
                score=score,
                source=SOURCE_NUGGET,
            ))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def search_nuggets_text(self, query: str, limit: int = 10) -> list[Nugget]:
        """
        Rank nuggets by token overlap with the query.

        A match on the answer counts for less than a match on the question.
        """
        if not query or not query.strip():
            return []

        cfg = self._config
        query_tokens = tokenize(query)
        results = []

        for nugget in await self._store.get_all_nuggets():
            try:
                q_score = relevance_score(query_tokens, tokenize(nugget.question))
                a_score = relevance_score(query_tokens, tokenize(nugget.answer))
            except Exception as e:
                logger.warning("Skipping nugget %s in nugget search: %s", nugget.id, e)
                continue
            nugget.score = max(q_score, cfg.answer_weight * a_score)
            if nugget.score > cfg.nugget_threshold:
                results.append(nugget)

        results.sort(key=lambda n: n.score, reverse=True)
        return results[:limit]
