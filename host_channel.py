"""
Message channel between the editor and its embedding host.

Messages are ``{"name": <message name>, "data": <payload>}`` dictionaries.
Outbound messages are handed to a transport callable supplied by the
embedding process; inbound messages are pushed in through ``receive()``.

Handlers are registered per message name, either one-shot (removed after
the first matching message) or recurring. ``request()`` posts a message and
returns an awaitable answer; outstanding requests waiting for the same
message name are answered in the order they were made.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger("host_channel")


class MessageName(str, Enum):
    GET_INITIAL_DATA = "getInitialData"
    SET_INITIAL_DATA = "setInitialData"
    SAVE_GRAPH = "saveGraph"
    GRAPH_SAVED = "graphSaved"
    FAILED_OPERATION_REASON = "failedOperationReason"
    NAME_AVAILABLE_CHECK = "nameAvailableCheck"
    SAVE_INSTANCE = "saveInstance"
    SAVE_AND_ACTIVATE = "saveAndActivate"
    CLOSE_WINDOW = "closeWindow"


@dataclass(frozen=True)
class HostMessage:
    name: str
    data: Any = None

    @staticmethod
    def from_dict(data: dict) -> "HostMessage":
        if not isinstance(data, dict) or not data.get("name"):
            raise ValueError(f"Invalid host message: {data!r}")
        return HostMessage(name=str(data["name"]), data=data.get("data"))

    def to_dict(self) -> dict:
        return {"name": self.name, "data": self.data}


@dataclass(frozen=True)
class Subscription:
    id: int
    name: str
    callback: Callable[[Any], None]
    once: bool


@dataclass(frozen=True)
class _PendingRequest:
    names: frozenset[str]
    future: asyncio.Future


Transport = Callable[[dict], None]


def _message_name(name: "MessageName | str") -> str:
    return name.value if isinstance(name, MessageName) else str(name)


class HostChannel:
    """
    Request/response channel to the host.

    All methods are expected to be called from the single event loop the
    editor runs on; nothing here is thread-safe.
    """

    def __init__(self, transport: Transport):
        self._transport = transport
        self._subscriptions: list[Subscription] = []
        self._ids = itertools.count(1)
        self._requests: list[_PendingRequest] = []
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def post(self, name: "MessageName | str", data: Any = None) -> None:
        """
        Send a message to the host without waiting for an answer.

        Raises:
            RuntimeError: If the channel has been disposed.
        """
        if self._disposed:
            raise RuntimeError("Cannot post to a disposed host channel.")
        message = HostMessage(name=_message_name(name), data=data)
        logger.debug(f"Posting message '{message.name}' to host")
        self._transport(message.to_dict())

    def subscribe(
        self,
        name: "MessageName | str",
        callback: Callable[[Any], None],
        once: bool = False,
    ) -> Subscription:
        """Register a handler called with the payload of every (or the next)
        message named ``name``."""
        subscription = Subscription(
            id=next(self._ids), name=_message_name(name), callback=callback, once=once
        )
        if not self._disposed:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions = [
            item for item in self._subscriptions if item.id != subscription.id
        ]

    def receive(self, message: "HostMessage | dict") -> int:
        """
        Dispatch an inbound message to the handlers registered for its name.

        Handlers run in registration order. One-shot handlers are removed
        before they run, so a handler may safely re-subscribe. The message
        then answers the oldest outstanding request waiting for its name.

        Returns:
            int: Number of handlers and requests the message was delivered to.
        """
        if isinstance(message, dict):
            message = HostMessage.from_dict(message)
        if self._disposed:
            logger.debug(f"Ignoring message '{message.name}' on disposed channel")
            return 0

        matching = [item for item in self._subscriptions if item.name == message.name]
        one_shot_ids = {item.id for item in matching if item.once}
        if one_shot_ids:
            self._subscriptions = [
                item for item in self._subscriptions if item.id not in one_shot_ids
            ]
        for subscription in matching:
            subscription.callback(message.data)

        delivered = len(matching)
        for request in self._requests:
            if message.name in request.names and not request.future.done():
                self._requests.remove(request)
                request.future.set_result(message)
                delivered += 1
                break

        if not delivered:
            logger.debug(f"No handler registered for message '{message.name}'")
        return delivered

    async def request(
        self,
        name: "MessageName | str",
        data: Any = None,
        responses: Optional[Iterable["MessageName | str"]] = None,
    ) -> HostMessage:
        """
        Post a message and wait for the first answer among ``responses``.

        Args:
            name: Message to send.
            data: Message payload.
            responses: Message names accepted as an answer; defaults to the
                name of the request itself.

        Returns:
            HostMessage: The answer, whose name tells which response arrived.

        Raises:
            asyncio.CancelledError: If the channel is disposed first.
        """
        response_names = frozenset(
            _message_name(item) for item in (responses or [name])
        )
        request = _PendingRequest(
            names=response_names, future=asyncio.get_running_loop().create_future()
        )
        self._requests.append(request)
        try:
            self.post(name, data)
            return await request.future
        finally:
            if request in self._requests:
                self._requests.remove(request)

    def dispose(self) -> None:
        """Drop every handler and cancel outstanding requests. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._subscriptions = []
        for request in self._requests:
            if not request.future.done():
                request.future.cancel()
        self._requests = []
        logger.debug("Host channel disposed")
