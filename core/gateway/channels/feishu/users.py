"""
Cached Feishu user-profile lookup
"""

import time
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel

from logger import get_logger

from core.gateway.channels.feishu.api import FeishuApiClient
from core.gateway.channels.feishu.config import FeishuAccount
from core.gateway.channels.feishu.token import TokenCache

logger = get_logger("gateway.channels.feishu.users")


class UserProfile(BaseModel):
    id: str
    name: str = "Unknown"
    avatar: Optional[str] = None


class UserDirectory:
    """
    Looks up user profiles and caches hits per (account, id type, user id).

    Misses and failures are not cached; expired entries are evicted on access and the
    oldest entry is dropped once ``max_entries`` is reached.
    """

    def __init__(
        self,
        api: FeishuApiClient,
        token_cache: TokenCache,
        ttl_seconds: float = 3600.0,
        max_entries: int = 1024,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._api = api
        self._token_cache = token_cache
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._cache: Dict[Tuple[str, str, str], Tuple[float, UserProfile]] = {}

    async def get_user(
        self,
        account: FeishuAccount,
        user_id: str,
        id_type: str = "open_id",
    ) -> Optional[UserProfile]:
        key = (account.account_id, id_type, user_id)
        cached = self._cache.get(key)
        if cached is not None:
            if self._clock() - cached[0] < self._ttl:
                return cached[1]
            del self._cache[key]

        try:
            token = await self._token_cache.get_token(account)
            user = await self._api.get_user(account, token, user_id, id_type)
        except Exception as e:
            logger.debug(
                "Feishu user lookup failed",
                extra={"account": account.account_id, "user_id": user_id, "error": str(e)},
            )
            return None

        profile = UserProfile(
            id=user.get("open_id") or user_id,
            name=user.get("name") or user.get("nick_name") or "Unknown",
            avatar=(user.get("avatar") or {}).get("url"),
        )
        if len(self._cache) >= self._max_entries:
            # oldest insertion first
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = (self._clock(), profile)
        return profile
