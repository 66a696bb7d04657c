"""
Database Module
===============

Async MongoDB access for the regulatory and core pipeline databases.

Usage:
    from shared.database import MongoDBClient

    regulatory = MongoDBClient.regulatory_database()
    core = MongoDBClient.core_database()
"""

from shared.database.mongodb import MongoDBClient


__all__ = [
    "MongoDBClient",
]
