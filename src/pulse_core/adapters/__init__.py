"""Per-platform source adapters."""
from .amazon import AmazonAdsAdapter
from .base import SourceAdapter
from .meta import FacebookAdapter, InstagramAdapter
from .tiktok import TikTokAdapter
from .twitter import TwitterAdapter

__all__ = [
    "AmazonAdsAdapter",
    "FacebookAdapter",
    "InstagramAdapter",
    "SourceAdapter",
    "TikTokAdapter",
    "TwitterAdapter",
]
