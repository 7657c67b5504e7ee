"""
Channel manager

Owns the inbound sessions of every configured account:
start, stop, status reporting and operator pairing actions.
"""

from typing import Any, Dict, List, Optional, Tuple

from logger import get_logger

from core.gateway.channel import HostCallbacks

logger = get_logger("gateway.manager")


class ChannelManager:
    """
    Runs one inbound session per (channel, account).

    Responsibilities:
    - Register channels
    - Start / stop a session for each configured account
    - Report session status
    - Forward pairing approvals to the owning session
    """

    def __init__(self, host_config: Dict[str, Any], callbacks: Optional[HostCallbacks] = None) -> None:
        self._host_config = host_config
        self._callbacks = callbacks or HostCallbacks()
        self._channels: Dict[str, Any] = {}
        self._sessions: Dict[Tuple[str, str], Any] = {}

    def register(self, channel: Any) -> None:
        """
        Register a channel plugin (anything exposing ``id``,
        ``list_account_ids`` and ``create_inbound``).
        """
        channel_id = channel.id
        if channel_id in self._channels:
            logger.warning(
                "Channel already registered, replacing",
                extra={"channel": channel_id},
            )
        self._channels[channel_id] = channel
        logger.info("Channel registered", extra={"channel": channel_id})

    # alias matching the host registration hook
    register_channel = register

    def get_channel(self, channel_id: str) -> Optional[Any]:
        return self._channels.get(channel_id)

    async def start_all(self) -> None:
        """Start a session for every configured account. Failures are logged per account."""
        started = []
        for channel_id, channel in self._channels.items():
            for account_id in channel.list_account_ids(self._host_config):
                key = (channel_id, account_id)
                if key in self._sessions:
                    continue
                session = channel.create_inbound(self._host_config, account_id, self._callbacks)
                try:
                    await session.start()
                except Exception as e:
                    logger.warning(
                        "Failed to start channel session",
                        extra={"channel": channel_id, "account": account_id, "error": str(e)},
                    )
                    await session.stop()
                    continue
                self._sessions[key] = session
                started.append(f"{channel_id}:{account_id}")

        if started:
            logger.info(
                "Gateway sessions started",
                extra={"started": started, "total": len(self._sessions)},
            )
        else:
            logger.warning("No channel sessions started")

    async def stop_all(self) -> None:
        """Stop all running sessions gracefully."""
        for (channel_id, account_id), session in list(self._sessions.items()):
            try:
                await session.stop()
                logger.info("Channel session stopped", extra={"channel": channel_id, "account": account_id})
            except Exception as e:
                logger.warning(
                    "Error stopping channel session",
                    extra={"channel": channel_id, "account": account_id, "error": str(e)},
                )
        self._sessions.clear()

        for channel in self._channels.values():
            close = getattr(channel, "close", None)
            if close is not None:
                await close()

        logger.info("All gateway sessions stopped")

    def get_session(self, channel_id: str, account_id: str) -> Any:
        """
        Raises:
            KeyError: no running session for that account
        """
        return self._sessions[(channel_id, account_id)]

    def get_all_status(self) -> Dict[str, str]:
        return {
            f"{channel_id}:{account_id}": session.get_status().value
            for (channel_id, account_id), session in self._sessions.items()
        }

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [
            {
                "channel": channel_id,
                "display_name": self._channels[channel_id].display_name,
                "account_id": account_id,
                "mode": session.mode,
                "status": session.get_status().value,
                "pending": len(session.pending_users()),
            }
            for (channel_id, account_id), session in self._sessions.items()
        ]

    def pending(self, channel_id: str, account_id: str) -> List[str]:
        return self.get_session(channel_id, account_id).pending_users()

    def approve(self, channel_id: str, account_id: str, user_id: str) -> bool:
        return self.get_session(channel_id, account_id).approve(user_id)

    def revoke(self, channel_id: str, account_id: str, user_id: str) -> bool:
        return self.get_session(channel_id, account_id).revoke(user_id)
