"""Result delivery: registered method callbacks or result-ready events."""

from __future__ import annotations

import dataclasses
import io
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, BinaryIO

from bulkflow.errors import CallbackResolutionError, InvalidWorkRequestError
from bulkflow.pipeline.models import ResultReadyEvent
from bulkflow.storage.sqlmodel_models import WorkEntry

logger = logging.getLogger(__name__)

CallbackHandler = Callable[[BinaryIO, Any], None]
EventHandler = Callable[[ResultReadyEvent], None]


@dataclass(slots=True)
class RegisteredCallback:
    """Handler plus the type its stored payload is decoded into."""

    key: str
    handler: CallbackHandler
    payload_type: type | None = None


class CallbackRegistry:
    """Callback handlers populated by the host at startup.

    Entries persist only the registry key and a JSON payload, so a handler
    must be registered under the same key in every process that polls.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, RegisteredCallback] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._callbacks

    def register(
        self,
        key: str,
        handler: CallbackHandler,
        *,
        payload_type: type | None = None,
    ) -> None:
        if not key or not key.strip():
            raise ValueError("Callback key must be a non-empty string.")
        if key in self._callbacks:
            raise ValueError(f"Callback key already registered: {key!r}")
        self._callbacks[key] = RegisteredCallback(
            key=key,
            handler=handler,
            payload_type=payload_type,
        )

    def callback(
        self,
        key: str,
        *,
        payload_type: type | None = None,
    ) -> Callable[[CallbackHandler], CallbackHandler]:
        """Decorator form of :meth:`register`."""

        def _decorator(handler: CallbackHandler) -> CallbackHandler:
            self.register(key, handler, payload_type=payload_type)
            return handler

        return _decorator

    def resolve(self, key: str) -> RegisteredCallback:
        registered = self._callbacks.get(key)
        if registered is None:
            raise CallbackResolutionError(f"No callback registered under key {key!r}")
        return registered

    def dump_payload(self, payload: Any) -> str:
        """Serialize a callback payload for storage."""

        if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
            payload = dataclasses.asdict(payload)
        try:
            return json.dumps(payload, ensure_ascii=False, sort_keys=True)
        except (TypeError, ValueError) as error:
            raise InvalidWorkRequestError(
                f"Callback payload is not JSON serializable: {error}",
            ) from error

    def load_payload(self, key: str, raw: str | None) -> Any:
        """Decode a stored payload into the type registered for ``key``."""

        registered = self.resolve(key)
        if raw is None:
            raise CallbackResolutionError(f"Stored payload for callback {key!r} is missing")
        try:
            data = json.loads(raw)
            if registered.payload_type is None:
                return data
            if isinstance(data, dict):
                return registered.payload_type(**data)
            return registered.payload_type(data)
        except (TypeError, ValueError) as error:
            raise CallbackResolutionError(
                f"Stored payload for callback {key!r} cannot be decoded: {error}",
            ) from error


class CallbackDispatcher:
    """Hands downloaded results to the host."""

    def __init__(self, registry: CallbackRegistry | None = None) -> None:
        self.registry = registry or CallbackRegistry()
        self._subscribers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._subscribers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers.remove(handler)

    def dispatch(self, entry: WorkEntry) -> None:
        """Deliver the entry's content; raises if delivery fails."""

        content = entry.content or b""
        if entry.callback_key is not None:
            registered = self.registry.resolve(entry.callback_key)
            payload = self.registry.load_payload(entry.callback_key, entry.callback_payload_json)
            logger.info(
                "Invoking callback %r for %s.",
                registered.key,
                entry.identity_description,
            )
            registered.handler(io.BytesIO(content), payload)
            return

        if not self._subscribers:
            logger.warning(
                "Result for %s is ready but no event subscriber is registered.",
                entry.identity_description,
            )
            return

        context = json.loads(entry.context_json) if entry.context_json else {}
        for handler in list(self._subscribers):
            handler(
                ResultReadyEvent(
                    content=io.BytesIO(content),
                    region=entry.region,
                    account_id=entry.account_id,
                    result_id=entry.remote_result_id,
                    work_type=entry.work_type,
                    context=dict(context),
                ),
            )
