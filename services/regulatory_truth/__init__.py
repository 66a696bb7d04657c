"""
Regulatory Truth Service
========================

Pipeline that turns primary legal sources into published, provenance-backed
regulatory rules.

Features:
- Adaptive source monitoring with per-domain rate limiting
- Immutable evidence capture with content-hash change detection
- Quote-level provenance verification
- Structural conflict detection and precedence arbitration
- Guarded rule lifecycle (DRAFT -> PENDING_REVIEW -> APPROVED -> PUBLISHED)
- Soft-fail batch execution and watchdog alerting
"""

__version__ = "0.1.0"
