"""
MongoDB Client
==============

Async MongoDB client using Motor. Serves both the regulatory database
(sources, items, evidence) and the core pipeline database (facts,
pointers, rules, conflicts, alerts).

Version: 0.1.0
"""

import time
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from shared.config import settings
from shared.logging import get_logger

logger = get_logger(__name__)


class MongoDBClient:
    """
    Async MongoDB client wrapper.

    Manages client lifecycle and provides database access.
    """

    _client: AsyncIOMotorClient | None = None  # type: ignore[type-arg]

    @classmethod
    def get_client(cls) -> AsyncIOMotorClient:  # type: ignore[type-arg]
        """Get or create the async client."""
        if cls._client is None:
            cls._client = AsyncIOMotorClient(
                settings.mongodb.uri,
                tz_aware=True,
                maxPoolSize=50,
                minPoolSize=5,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=5000,
            )
            logger.info(
                "mongodb_client_created",
                host=settings.mongodb.host,
                regulatory_db=settings.mongodb.regulatory_db,
                core_db=settings.mongodb.core_db,
            )
        return cls._client

    @classmethod
    def get_database(cls, name: str | None = None) -> AsyncIOMotorDatabase:  # type: ignore[type-arg]
        """
        Get a database instance.

        Args:
            name: Database name (default: the core pipeline database)

        Returns:
            AsyncIOMotorDatabase instance
        """
        client = cls.get_client()
        db_name = name or settings.mongodb.core_db
        return client[db_name]

    @classmethod
    def regulatory_database(cls) -> AsyncIOMotorDatabase:  # type: ignore[type-arg]
        """Database holding sources, discovered items and evidence."""
        return cls.get_database(settings.mongodb.regulatory_db)

    @classmethod
    def core_database(cls) -> AsyncIOMotorDatabase:  # type: ignore[type-arg]
        """Database holding pipeline facts, rules and conflicts."""
        return cls.get_database(settings.mongodb.core_db)

    @classmethod
    async def close(cls) -> None:
        """Close the client and release all connections."""
        if cls._client is not None:
            cls._client.close()
            cls._client = None
            logger.info("mongodb_client_closed")

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status and latency
        """
        try:
            start = time.perf_counter()
            client = cls.get_client()
            result = await client.admin.command("ping")
            latency_ms = (time.perf_counter() - start) * 1000

            return {
                "status": "healthy" if result.get("ok") == 1 else "unhealthy",
                "latency_ms": round(latency_ms, 2),
            }
        except Exception as e:
            logger.error("mongodb_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }

    @classmethod
    async def create_indexes(cls) -> None:
        """Create indexes for all collections."""
        regulatory = cls.regulatory_database()

        await regulatory.sources.create_index("slug", unique=True)
        await regulatory.discovered_items.create_index("url", unique=True)
        await regulatory.discovered_items.create_index([("source_id", ASCENDING), ("next_scan_due", ASCENDING)])
        await regulatory.evidence.create_index([("url", ASCENDING), ("content_hash", ASCENDING)], unique=True)
        await regulatory.evidence.create_index("content_hash")
        await regulatory.evidence.create_index([("fetched_at", ASCENDING)])
        await regulatory.evidence_artifacts.create_index("evidence_id")

        core = cls.core_database()

        await core.candidate_facts.create_index("status")
        await core.candidate_facts.create_index("grounding_quotes.evidence_id")
        await core.agent_runs.create_index([("evidence_id", ASCENDING), ("agent_type", ASCENDING)])
        await core.source_pointers.create_index("evidence_id")
        await core.source_pointers.create_index("article_number")
        await core.rules.create_index([("concept_slug", ASCENDING), ("status", ASCENDING)])
        await core.rules.create_index("source_pointer_ids")
        await core.rules.create_index([("created_at", DESCENDING)])
        await core.conflicts.create_index(
            [("pair_key", ASCENDING), ("status", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": "OPEN"},
        )
        await core.watchdog_alerts.create_index([("occurred_at", DESCENDING)])
        await core.soft_failures.create_index([("occurred_at", DESCENDING)])

        logger.info("mongodb_indexes_created")

