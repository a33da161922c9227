try:
    import aiocache  # noqa: F401
except ModuleNotFoundError as e:
    raise ImportError(
        "CachedLicenseKeyService requires 'aiocache'. Install it with: uv add fastapi_license_key[aiocache]"
    ) from e

from typing import Any, Dict, Optional

import aiocache
from aiocache import BaseCache

from fastapi_license_key.domain.entities import LicenseKey
from fastapi_license_key.repositories.base import AbstractAuditLogRepository, AbstractLicenseKeyRepository
from fastapi_license_key.services.base import LicenseKeyService


class CachedLicenseKeyService(LicenseKeyService):
    """License key service with a lookup cache for the read paths (check, info).

    Cache Model:
        Records are cached by key token after a successful lookup. Activation,
        reset and deletion invalidate the entry of the key they touched. The
        read-modify-write paths always read the store, so a stale entry can
        never feed a conditional write. Unknown tokens are not cached.

    Invalidation:
        Every invalidation bumps a per-key generation counter. A lookup only
        fills the cache if the generation it saw before reading the store is
        still current, so a read overtaken by a write never re-caches the
        record that write replaced. Generations are tracked per process.

    Attributes:
        cache: The aiocache backend instance (configure TTL on the cache itself).
        cache_prefix: Prefix for cache keys (default: "license_key").
    """

    cache: aiocache.BaseCache

    def __init__(
        self,
        repo: AbstractLicenseKeyRepository,
        audit_repo: AbstractAuditLogRepository,
        cache: Optional[BaseCache] = None,
        cache_prefix: str = "license_key",
        **kwargs: Any,
    ) -> None:
        super().__init__(repo=repo, audit_repo=audit_repo, **kwargs)
        self.cache_prefix = cache_prefix
        self.cache = cache or aiocache.SimpleMemoryCache()
        self._generations: Dict[str, int] = {}

    def _get_cache_key(self, key: str) -> str:
        return f"{self.cache_prefix}:{key}"

    async def _lookup(self, key: str) -> Optional[LicenseKey]:
        cache_key = self._get_cache_key(key)
        generation = self._generations.get(key, 0)
        cached_entity = await self.cache.get(cache_key)

        if cached_entity is not None:
            return cached_entity

        entity = await super()._lookup(key)

        if entity is None or self._generations.get(key, 0) != generation:
            return entity

        await self.cache.set(cache_key, entity)
        if self._generations.get(key, 0) != generation:
            await self.cache.delete(cache_key)

        return entity

    async def _on_changed(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1
        await self.cache.delete(self._get_cache_key(key))
