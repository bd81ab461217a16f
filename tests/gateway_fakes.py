"""
Test doubles for the AI gateway: frozen clock, recording sleep, scripted
LLM provider and canned vector search.
"""
import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from app.llm.provider import EmbeddingResponse, LLMProvider, LLMResponse
from app.llm.vector_search import VectorSearchClient

TEST_MODEL = "gpt-4o-mini"

SENTIMENT_RESPONSE = json.dumps({
    "sentiment": {
        "positive": 0.7,
        "neutral": 0.2,
        "negative": 0.1,
        "overall": "positive",
        "confidence": 0.9,
    },
    "key_insights": ["customer is satisfied"],
})

# Hangs until the per-attempt timeout cancels it
HANG = object()


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeProvider(LLMProvider):
    """
    Scripted LLM provider.

    Each call pops the next scripted item: an exception is raised, a string
    becomes the completion content, an LLMResponse is returned as is, HANG
    blocks. When the script is empty the default content is returned.
    """

    def __init__(self, script: Optional[List[Any]] = None, default: str = SENTIMENT_RESPONSE,
                 tokens_in: Optional[int] = 100, tokens_out: Optional[int] = 50):
        self.script = list(script or [])
        self.default = default
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.calls: List[Dict[str, Any]] = []
        self.embed_calls: List[str] = []

    async def complete(self, prompt, model, max_tokens=1024, temperature=0.2, **kwargs):
        self.calls.append({"prompt": prompt, "model": model, "max_tokens": max_tokens})
        item = self.script.pop(0) if self.script else self.default
        # Yield so concurrent invocations interleave
        await asyncio.sleep(0)
        if item is HANG:
            await asyncio.sleep(60)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, LLMResponse):
            return item
        return LLMResponse(content=item, tokens_in=self.tokens_in, tokens_out=self.tokens_out, model=model)

    async def embed(self, text, model):
        self.embed_calls.append(text)
        item = self.script.pop(0) if self.script else None
        if isinstance(item, BaseException):
            raise item
        return EmbeddingResponse(vector=[0.1, 0.2, 0.3], tokens_in=8, model=model)


class FakeVectorSearch(VectorSearchClient):
    """Returns canned hits and remembers the filters it was queried with."""

    def __init__(self, hits: Optional[List[Dict[str, Any]]] = None):
        self.hits = hits if hits is not None else [
            {
                "message_id": "msg_1",
                "conversation_id": "conv_1",
                "content": "Let's meet on Thursday",
                "similarity": 0.91,
                "metadata": {"channel": "email"},
            },
        ]
        self.queries: List[Dict[str, Any]] = []

    async def query(self, vector, user_id, conversation_ids=None, limit=10):
        self.queries.append({
            "vector": vector,
            "user_id": user_id,
            "conversation_ids": conversation_ids,
            "limit": limit,
        })
        return self.hits[:limit]
