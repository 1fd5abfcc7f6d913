# src/lifevault/anchor/__init__.py
"""
LifeVault: anchoring package

  - receipt: AnchorReceipt and the per-request stage enum
  - pipeline: AnchorPipeline (build -> sign -> submit -> confirm, or mock)
"""

from __future__ import annotations

__all__ = [
    "receipt",
    "pipeline",
]
