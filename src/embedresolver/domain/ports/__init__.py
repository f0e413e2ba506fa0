from .cache import CachePort
from .page_fetcher import FetchedPage, PageFetcherPort
from .resolution_cache import ResolutionCachePort

__all__ = [
    "CachePort",
    "FetchedPage",
    "PageFetcherPort",
    "ResolutionCachePort",
]
