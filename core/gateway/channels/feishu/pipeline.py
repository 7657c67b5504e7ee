"""
Inbound routing pipeline

Synchronous decision step shared by the WebSocket and webhook sessions:

    payload -> classify -> gate (direct: pairing, group: group gate) -> decode -> Route

The sessions execute the returned Route asynchronously.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from core.gateway.channels.feishu.config import FeishuAccount, FeishuConfig
from core.gateway.channels.feishu.events import (
    APP_ID_KIND,
    MessageEvent,
    UnrecognizedEvent,
    classify,
)
from core.gateway.channels.feishu.pairing import PairingState, evaluate, evaluate_group
from core.gateway.channels.feishu.transcoder import decode
from core.gateway.types import NormalizedMessage


@dataclass(frozen=True)
class ForwardMessage:
    message: NormalizedMessage


@dataclass(frozen=True)
class ForwardEvent:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class PromptPairing:
    user_id: str
    chat_id: str


@dataclass(frozen=True)
class Drop:
    reason: str


Route = Union[ForwardMessage, ForwardEvent, PromptPairing, Drop]


def route_event(
    event: Union[MessageEvent, UnrecognizedEvent],
    account: FeishuAccount,
    config: FeishuConfig,
    state: PairingState,
) -> Route:
    if isinstance(event, UnrecognizedEvent):
        return ForwardEvent(payload=event.payload)

    if event.is_direct:
        # our own echoed replies must not enter the pairing flow
        if event.sender.id_type != APP_ID_KIND:
            decision = evaluate(event.sender.id, config.dm_policy, state)
            if not decision.allowed:
                return PromptPairing(user_id=event.sender.id, chat_id=event.chat_id)
    else:
        decision = evaluate_group(event.chat_id, event.mentioned, config)
        if not decision.allowed:
            return Drop(reason=f"group_{decision.reason.value}")

    message = decode(event, account)
    if message is None:
        return Drop(reason="self")
    return ForwardMessage(message=message)


def route_payload(
    payload: Dict[str, Any],
    account: FeishuAccount,
    config: FeishuConfig,
    state: PairingState,
) -> Route:
    """
    Route one decoded frame/body.

    Raises:
        ProtocolError: ``event.message`` present but malformed
    """
    event = classify(payload)
    if event is None:
        return Drop(reason="no_event")
    return route_event(event, account, config, state)
