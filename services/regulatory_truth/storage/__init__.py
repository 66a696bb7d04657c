"""
Storage
=======

Ports and adapters for the regulatory and rule stores.
"""

from services.regulatory_truth.storage.base import RegulatoryStore, RuleStore, conflict_pair_key
from services.regulatory_truth.storage.memory import InMemoryRegulatoryStore, InMemoryRuleStore
from services.regulatory_truth.storage.mongo import MongoRegulatoryStore, MongoRuleStore

__all__ = [
    "RegulatoryStore",
    "RuleStore",
    "conflict_pair_key",
    "InMemoryRegulatoryStore",
    "InMemoryRuleStore",
    "MongoRegulatoryStore",
    "MongoRuleStore",
]
