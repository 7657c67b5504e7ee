"""
Access control for inbound senders

Direct messages go through a per-user admission state machine
(unseen -> pending -> paired, plus a static allowlist overlay).
Group messages go through a separate chat-level gate.

Both gates are pure: they only mutate the PairingState passed in and
never perform I/O. Sending the pairing prompt is the caller's job.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Set

from core.gateway.channels.feishu.config import DmPolicy, FeishuConfig


class AccessReason(str, Enum):
    PENDING = "pending"
    # reserved: none of the DM policies produce it
    DENIED = "denied"
    ALLOWED = "allowed"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: AccessReason


ALLOW = AccessDecision(True, AccessReason.ALLOWED)
PENDING = AccessDecision(False, AccessReason.PENDING)
DENY = AccessDecision(False, AccessReason.DENIED)


@dataclass
class PairingState:
    """
    Admission state of one inbound session.

    ``allowlist`` is seeded once at session start and not changed afterwards.
    Lives as long as the session; nothing is persisted.
    """
    pending: Set[str] = field(default_factory=set)
    paired: Set[str] = field(default_factory=set)
    allowlist: frozenset = field(default_factory=frozenset)

    @classmethod
    def seeded(cls, allow_from: Iterable[str]) -> "PairingState":
        return cls(allowlist=frozenset(str(uid) for uid in allow_from))

    def approve(self, user_id: str) -> bool:
        """Operator approval. Returns False when the user was already paired."""
        if user_id in self.paired:
            return False
        self.pending.discard(user_id)
        self.paired.add(user_id)
        return True

    def revoke(self, user_id: str) -> bool:
        """Drop a pairing or pending request. Returns True if anything changed."""
        changed = user_id in self.paired or user_id in self.pending
        self.paired.discard(user_id)
        self.pending.discard(user_id)
        return changed


def evaluate(user_id: str, policy: DmPolicy, state: PairingState) -> AccessDecision:
    """
    Decide whether a direct message from ``user_id`` may reach the host.

    - open: always allowed
    - allowlist: allowed iff in allowlist or paired, otherwise pending
    - pairing: paired -> allowed; allowlisted -> promoted to paired once;
      anyone else is recorded as pending (idempotently)
    """
    if policy == "open":
        return ALLOW

    if policy == "allowlist":
        if user_id in state.allowlist or user_id in state.paired:
            return ALLOW
        return PENDING

    if user_id in state.paired:
        return ALLOW
    if user_id in state.allowlist:
        state.paired.add(user_id)
        state.pending.discard(user_id)
        return ALLOW
    state.pending.add(user_id)
    return PENDING


def evaluate_group(chat_id: str, mentioned: bool, config: FeishuConfig) -> AccessDecision:
    """
    Chat-level gate for group messages.

    With the defaults (group_policy=open, require_mention=False) every
    group message is allowed.
    """
    if config.group_policy == "disabled":
        return DENY
    if config.group_policy == "allowlist" and chat_id not in config.group_allow_from:
        return DENY
    if config.require_mention and not mentioned:
        return DENY
    return ALLOW


def pairing_prompt(user_id: str) -> str:
    """Text sent to an unapproved direct-message sender."""
    return (
        "Your messages are waiting for approval.\n"
        "Ask the bot operator to approve your user id:\n"
        f"{user_id}"
    )
