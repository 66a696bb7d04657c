"""
Regulatory Truth Routes
=======================

Admin API routers.
"""

from services.regulatory_truth.routes import conflicts, pipeline, rules

__all__ = ["rules", "conflicts", "pipeline"]
