import os
from typing import Optional

from .errors import KeywordStoreError
from .keyword_cache import KeywordCache, is_url
from .logging_utils import setup_launcher_logger
from .models import ResolveResult, Resolution
from .status import StatusChannel

# Setup logger for resolver module
try:
    logger = setup_launcher_logger("resolver")
except Exception:
    # Fallback if logging setup fails
    import logging
    logger = logging.getLogger("resolver")


def target_exists(target: str) -> bool:
    try:
        return os.path.exists(target)
    except (OSError, ValueError):
        return False


class PathResolver:
    """Classify a normalized keyword as ready-to-launch or needing a search.

    Resolution order:
    1. No cache entry                     -> MISS
    2. URL target                         -> CACHED_HIT (never checked on disk)
    3. Cached path exists on disk         -> CACHED_HIT
    4. Cached path is gone                -> STALE_ENTRY, entry removed and persisted
    """

    def __init__(self, cache: KeywordCache, status: Optional[StatusChannel] = None):
        self.cache = cache
        self.status = status

    def resolve(self, keyword: str) -> ResolveResult:
        keyword = (keyword or "").strip().lower()
        target = self.cache.lookup(keyword)

        if target is None:
            logger.debug(f"No cached target for '{keyword}'")
            return ResolveResult(keyword=keyword, resolution=Resolution.MISS)

        if is_url(target) or target_exists(target):
            logger.info(f"Cache hit: {keyword} -> {target}")
            return ResolveResult(keyword=keyword, resolution=Resolution.CACHED_HIT, target=target)

        logger.warning(f"Cleaning invalid keyword entry: {keyword} -> {target}")
        try:
            self.cache.remove_and_persist(keyword)
        except KeywordStoreError as e:
            # In-memory removal already happened; the next successful write reconciles the store
            logger.error(f"Could not persist removal of '{keyword}': {e}")
            if self.status is not None:
                self.status.publish(str(e))
        return ResolveResult(keyword=keyword, resolution=Resolution.STALE_ENTRY, target=target)
