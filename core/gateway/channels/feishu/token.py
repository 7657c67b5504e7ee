"""
Tenant access token cache

The credential lives on the account; this class only decides when to
refresh it. Callers that arrive while a refresh is running await the same
future, so N concurrent callers cause exactly one exchange request.
"""

import asyncio
import time
from typing import Callable, Optional

from logger import get_logger, log_execution_time

from core.gateway.channels.feishu.api import FeishuApiClient
from core.gateway.channels.feishu.config import (
    TOKEN_EXPIRY_SKEW_MS,
    Credential,
    FeishuAccount,
)

logger = get_logger("gateway.channels.feishu.token")


def _now_ms() -> int:
    return int(time.time() * 1000)


class TokenCache:
    """
    Hands out tenant access tokens with at least 60s of validity left.

    Args:
        api: platform client used for the credential exchange
        clock: returns the current time in epoch milliseconds
    """

    def __init__(self, api: FeishuApiClient, clock: Optional[Callable[[], int]] = None):
        self._api = api
        self._clock = clock or _now_ms

    async def get_token(self, account: FeishuAccount) -> str:
        """
        Return a valid token, refreshing it if needed.

        Raises:
            AuthError: the exchange was rejected (nothing is cached)
            TransportError: the exchange request failed
        """
        if account.credential.is_fresh(self._clock(), TOKEN_EXPIRY_SKEW_MS):
            return account.credential.token

        refresh = account._refresh
        if refresh is None or refresh.done():
            refresh = asyncio.ensure_future(self._refresh(account))
            account._refresh = refresh
        # shield: a cancelled caller must not cancel the refresh other callers wait on
        return await asyncio.shield(refresh)

    def invalidate(self, account: FeishuAccount) -> None:
        """Forget the cached credential so the next call refreshes."""
        account.credential = Credential()

    async def _refresh(self, account: FeishuAccount) -> str:
        logger.info("Refreshing tenant access token", extra={"account": account.account_id})
        with log_execution_time("tenant token exchange", logger):
            data = await self._api.exchange_token(account)
        token = data.get("tenant_access_token", "")
        expire_s = int(data.get("expire", 0))
        account.credential = Credential(
            token=token,
            expires_at_ms=self._clock() + expire_s * 1000,
        )
        logger.debug(
            "Tenant access token refreshed",
            extra={"account": account.account_id, "expire_seconds": expire_s},
        )
        return token
