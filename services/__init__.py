"""
RegTruth Services
=================

Services:
- regulatory_truth: source monitoring, evidence capture, provenance-gated
  rule lifecycle and conflict arbitration
"""

__all__ = [
    "regulatory_truth",
]
