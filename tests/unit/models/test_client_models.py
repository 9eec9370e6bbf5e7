"""Tests for observer roles, subscription filters and command envelopes."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from simrelay.errors import ClientProtocolError, ErrorCode
from simrelay.models.clients import (
    ClientCommand,
    ClientRole,
    ClientSession,
    SubscriptionFilter,
)


class TestClientRole:
    def test_default_is_observer(self) -> None:
        assert ClientRole.parse(None) is ClientRole.OBSERVER

    @pytest.mark.parametrize("name", ["visualization", "generic", "Observer"])
    def test_observer_aliases(self, name: str) -> None:
        assert ClientRole.parse(name) is ClientRole.OBSERVER

    def test_monitoring(self) -> None:
        assert ClientRole.parse("monitoring") is ClientRole.MONITORING

    def test_unknown_role_rejected(self) -> None:
        with pytest.raises(ClientProtocolError) as exc_info:
            ClientRole.parse("admin")

        assert exc_info.value.code is ErrorCode.INVALID_ARGUMENT
        assert "monitoring" in exc_info.value.details["allowed"]


class TestSubscriptionFilter:
    @pytest.mark.parametrize("events", [None, [], ["all"], ["*"], ["packet_tx", "all"]])
    def test_accept_all_forms(self, events: list[str] | None) -> None:
        subscription = SubscriptionFilter.from_list(events)

        assert subscription.accepts_all
        assert subscription.accepts("anything")
        assert subscription.to_list() == ["all"]

    def test_exact_kinds(self) -> None:
        subscription = SubscriptionFilter.from_list(["packet_tx"])

        assert subscription.accepts("packet_tx")
        assert not subscription.accepts("packet_rx")

    def test_glob_patterns(self) -> None:
        subscription = SubscriptionFilter.from_list(["node_*", "stats_pdr"])

        assert subscription.accepts("node_died")
        assert subscription.accepts("node_energy_update")
        assert subscription.accepts("stats_pdr")
        assert not subscription.accepts("packet_tx")

    def test_string_rejected(self) -> None:
        with pytest.raises(ClientProtocolError):
            SubscriptionFilter.from_list("packet_tx")  # type: ignore[arg-type]


class TestClientSession:
    def test_defaults(self) -> None:
        session = ClientSession()

        assert session.id.startswith("client_")
        assert session.role is ClientRole.OBSERVER
        assert session.subscription.accepts_all

    def test_ids_are_unique(self) -> None:
        assert len({ClientSession().id for _ in range(100)}) == 100

    def test_with_role_replaces(self) -> None:
        session = ClientSession()
        updated = session.with_role(ClientRole.MONITORING)

        assert updated is not session
        assert updated.id == session.id
        assert updated.role is ClientRole.MONITORING
        assert session.role is ClientRole.OBSERVER

    def test_with_role_keeps_filter_unless_given(self) -> None:
        session = ClientSession().with_subscription(SubscriptionFilter.from_list(["encrypt"]))

        assert session.with_role(ClientRole.CONTROL).subscription.to_list() == ["encrypt"]
        replaced = session.with_role(ClientRole.CONTROL, SubscriptionFilter.all())
        assert replaced.subscription.accepts_all

    def test_to_dict(self) -> None:
        data = ClientSession().to_dict()

        assert set(data) == {"clientId", "role", "subscribedEvents", "connectedAt"}
        assert data["role"] == "observer"


class TestClientCommand:
    def test_type_or_command(self) -> None:
        assert ClientCommand.model_validate({"type": "ping"}).name == "ping"
        assert ClientCommand.model_validate({"command": "get_stats"}).name == "get_stats"

    def test_command_wins_over_type(self) -> None:
        command = ClientCommand.model_validate({"command": "start_simulation", "type": "x"})
        assert command.name == "start_simulation"

    def test_wire_aliases(self) -> None:
        command = ClientCommand.model_validate({
            "type": "client_type",
            "clientType": "monitoring",
            "subscribedEvents": ["node_*"],
        })

        assert command.client_type == "monitoring"
        assert command.subscribed_events == ["node_*"]

    def test_node_id(self) -> None:
        command = ClientCommand.model_validate({"command": "get_node_history", "nodeId": 3})
        assert command.node_id == 3

    def test_extra_fields_allowed(self) -> None:
        command = ClientCommand.model_validate({"type": "ping", "clientTime": 123})
        assert command.name == "ping"

    def test_missing_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientCommand.model_validate({"nodeId": 1})

    def test_bad_node_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ClientCommand.model_validate({"command": "get_node_history", "nodeId": "abc"})
