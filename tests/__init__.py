"""
RegTruth Test Suite
===================

Test organization:
- tests/unit/                       - Pure helpers (hashing, velocity, rate limiter, classifier)
- tests/services/regulatory_truth/  - Pipeline stages, stores, CLI and admin API

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
"""
