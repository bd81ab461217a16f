"""
Vector search client used by the semantic search operation.

Index maintenance (upserting message embeddings) happens elsewhere; the
gateway only queries.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Filter, FieldCondition, MatchValue, MatchAny

logger = logging.getLogger(__name__)


class VectorSearchClient(ABC):
    """Abstract base class for vector search backends."""

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        user_id: str,
        conversation_ids: Optional[List[str]] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """
        Find the messages closest to a query vector.

        Returns:
            Ranked hits, each with message_id, conversation_id, content,
            similarity and metadata keys
        """
        pass


class QdrantVectorSearch(VectorSearchClient):
    """Qdrant-backed message search."""

    def __init__(self, url: str, collection_name: str = "messages", client: Optional[AsyncQdrantClient] = None):
        self.client = client or AsyncQdrantClient(url=url)
        self.collection_name = collection_name

    async def query(
        self,
        vector: List[float],
        user_id: str,
        conversation_ids: Optional[List[str]] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        must = [FieldCondition(key="user_id", match=MatchValue(value=user_id))]
        if conversation_ids:
            must.append(FieldCondition(key="conversation_id", match=MatchAny(any=conversation_ids)))

        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            query_filter=Filter(must=must),
            limit=limit,
            with_payload=True,
            # Cosine scores below zero are not matches
            score_threshold=0.0,
        )

        hits = []
        for point in response.points:
            payload = dict(point.payload or {})
            hits.append({
                "message_id": str(payload.pop("message_id", point.id)),
                "conversation_id": payload.pop("conversation_id", None),
                "content": payload.pop("content", ""),
                "similarity": point.score,
                "metadata": payload,
            })
        logger.debug(f"Vector search returned {len(hits)} hits for user {user_id}")
        return hits
