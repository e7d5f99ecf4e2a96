"""Health-gated artifact promotion."""

from __future__ import annotations

from shipwright.promotion.pipeline import IMAGE_FIELD, PromotionPipeline, lease_name

__all__ = ["IMAGE_FIELD", "PromotionPipeline", "lease_name"]
