"""
Shared enumerations for resources and chunks.
"""

from __future__ import annotations

import enum


class EmbeddingStatus(str, enum.Enum):
    """Lifecycle shared by resources and chunks."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ResourceType(str, enum.Enum):
    VIDEO = "video"
    PDF = "pdf"
    ARTICLE = "article"


class Category(str, enum.Enum):
    """
    Fixed resource taxonomy.

    GENERAL is universally relevant and survives every category filter.
    """
    COMMERCIAL = "commercial"
    META_ADS = "meta-ads"
    GOHIGHLEVEL = "gohighlevel"
    MANAGEMENT = "management"
    GENERAL = "general"
