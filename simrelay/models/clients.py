"""Observer session models: role, subscription filter and session value."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from fnmatch import fnmatchcase
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import ClientProtocolError, ErrorCode


class ClientRole(str, Enum):
    """Declared purpose of an observer.

    - OBSERVER: renders the network (receives node_update / node_states_update)
    - MONITORING: receives node_event and crypto_event digests
    - CONTROL: drives runs; receives only the common stream
    """

    OBSERVER = "observer"
    MONITORING = "monitoring"
    CONTROL = "control"

    @classmethod
    def parse(cls, value: str | None) -> ClientRole:
        """Resolve a wire role name. ``None`` means the default role."""
        if value is None:
            return cls.OBSERVER
        normalized = str(value).strip().lower()
        if normalized in ROLE_ALIASES:
            return ROLE_ALIASES[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ClientProtocolError(
                f"Unknown client role: {value!r}",
                ErrorCode.INVALID_ARGUMENT,
                allowed=[role.value for role in cls],
            ) from None


ROLE_ALIASES: dict[str, ClientRole] = {
    "visualization": ClientRole.OBSERVER,
    "generic": ClientRole.OBSERVER,
}


@dataclass(frozen=True)
class SubscriptionFilter:
    """Set of event-kind patterns (exact or glob such as ``node_*``).

    ``patterns is None`` accepts every kind.
    """

    patterns: frozenset[str] | None = None

    @classmethod
    def all(cls) -> SubscriptionFilter:
        return cls(None)

    @classmethod
    def from_list(cls, events: Iterable[str] | None) -> SubscriptionFilter:
        """Build from a wire ``events`` list; empty or ``"all"`` means all."""
        if events is None:
            return cls.all()
        if isinstance(events, str):
            raise ClientProtocolError(
                "Subscription must be a list of event kinds",
                ErrorCode.INVALID_ARGUMENT,
            )
        patterns = frozenset(str(e) for e in events)
        if not patterns or "all" in patterns or "*" in patterns:
            return cls.all()
        return cls(patterns)

    @property
    def accepts_all(self) -> bool:
        return self.patterns is None

    def accepts(self, kind: str) -> bool:
        if self.patterns is None:
            return True
        if kind in self.patterns:
            return True
        return any(fnmatchcase(kind, p) for p in self.patterns)

    def to_list(self) -> list[str]:
        if self.patterns is None:
            return ["all"]
        return sorted(self.patterns)


def new_session_id() -> str:
    """Opaque, server-generated id unique for the process lifetime."""
    return f"client_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ClientSession:
    """One connected observer. Replaced, never mutated."""

    id: str = field(default_factory=new_session_id)
    role: ClientRole = ClientRole.OBSERVER
    subscription: SubscriptionFilter = field(default_factory=SubscriptionFilter.all)
    connected_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def accepts(self, kind: str) -> bool:
        return self.subscription.accepts(kind)

    def with_role(
        self, role: ClientRole, subscription: SubscriptionFilter | None = None
    ) -> ClientSession:
        return replace(
            self,
            role=role,
            subscription=subscription if subscription is not None else self.subscription,
        )

    def with_subscription(self, subscription: SubscriptionFilter) -> ClientSession:
        return replace(self, subscription=subscription)

    def to_dict(self) -> dict[str, object]:
        return {
            "clientId": self.id,
            "role": self.role.value,
            "subscribedEvents": self.subscription.to_list(),
            "connectedAt": self.connected_at,
        }


class ClientCommand(BaseModel):
    """Inbound command envelope. The name comes from ``command`` or ``type``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    command: str | None = None
    type: str | None = None
    node_id: int | None = Field(default=None, alias="nodeId")
    client_type: str | None = Field(default=None, alias="clientType")
    role: str | None = None
    subscribed_events: list[str] | None = Field(default=None, alias="subscribedEvents")
    events: list[str] | None = None

    @model_validator(mode="after")
    def require_name(self) -> ClientCommand:
        if not (self.command or self.type):
            raise ValueError("message needs a 'command' or 'type' field")
        return self

    @property
    def name(self) -> str:
        return self.command or self.type or ""
