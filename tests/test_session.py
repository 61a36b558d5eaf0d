import pytest

from simplechat.errors import DuplicateLoginError, MissingLoginIdError, ProtocolError
from simplechat.session import SessionRegistry, is_login_command, make_label
from simplechat.transport import HostInfo

from conftest import FakeServerTransport


@pytest.fixture
def transport() -> FakeServerTransport:
    return FakeServerTransport()


@pytest.fixture
def registry(transport: FakeServerTransport) -> SessionRegistry:
    reg = SessionRegistry(transport)
    transport.set_connect_callback(reg.on_connect)
    transport.set_disconnect_callback(reg.on_disconnect)
    transport.set_exception_callback(reg.on_exception)
    transport.set_message_callback(reg.on_message)
    return reg


def test_connect_creates_session_without_login(transport, registry) -> None:
    transport.connect(1, HostInfo(host_name="box.lan", address="10.0.0.5"))
    sess = registry.get_session(1)
    assert sess is not None
    assert sess.label == "box.lan (10.0.0.5)"
    assert sess.login_id is None


def test_label_falls_back_when_resolution_fails() -> None:
    assert make_label(7, HostInfo(host_name=None, address="10.0.0.5")) == "10.0.0.5 (10.0.0.5)"
    assert make_label(7, HostInfo(host_name=None, address=None)) == "connection-7"
    assert make_label(7, None) == "connection-7"


def test_unbound_connections_broadcast_as_anon(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.deliver(1, "hi")
    transport.deliver(2, "yo")
    assert transport.inbox[1] == ["ANON> hi", "ANON> yo"]
    assert transport.inbox[2] == ["ANON> hi", "ANON> yo"]


def test_login_ack_goes_only_to_sender(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.deliver(1, "#login alice")
    assert transport.inbox[1] == ["SERVER MSG> login accepted for 'alice'"]
    assert transport.inbox[2] == []
    assert registry.login_id(1) == "alice"


def test_login_command_is_case_insensitive(transport, registry) -> None:
    transport.connect(1)
    transport.deliver(1, "#LOGIN Alice")
    assert registry.login_id(1) == "Alice"


def test_second_login_closes_connection(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.deliver(1, "#login alice")
    transport.deliver(1, "#login bob")

    assert transport.closed_handles == [1]
    errors = [m for m in transport.inbox[1] if "ERROR" in m]
    assert len(errors) == 1
    assert "already logged in as 'alice'" in errors[0]
    # Neither login line was broadcast.
    assert transport.inbox[2] == []
    assert registry.get_session(1) is None
    assert registry.get_session(2) is not None


def test_blank_login_closes_connection(transport, registry) -> None:
    transport.connect(1)
    transport.deliver(1, "#login ")
    assert transport.closed_handles == [1]
    assert transport.inbox[1] == ["SERVER MSG> ERROR: missing login id"]
    assert registry.get_session(1) is None


def test_overlong_login_is_rejected(transport) -> None:
    reg = SessionRegistry(transport, login_id_max_chars=4)
    transport.set_connect_callback(reg.on_connect)
    transport.set_disconnect_callback(reg.on_disconnect)
    transport.set_message_callback(reg.on_message)
    transport.connect(1)
    transport.deliver(1, "#login abcdefgh")
    assert transport.closed_handles == [1]
    assert len(transport.inbox[1]) == 1


def test_bind_login_raises_protocol_errors(transport, registry) -> None:
    transport.connect(1)
    with pytest.raises(MissingLoginIdError):
        registry.bind_login(1, "#login")
    assert registry.login_id(1) is None

    assert registry.bind_login(1, "#login alice") == "alice"
    with pytest.raises(DuplicateLoginError):
        registry.bind_login(1, "#login alice")
    assert registry.login_id(1) == "alice"

    with pytest.raises(ProtocolError):
        registry.bind_login(99, "#login ghost")


def test_duplicate_ids_across_connections_are_allowed(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.deliver(1, "#login alice")
    transport.deliver(2, "#login alice")
    assert transport.closed_handles == []
    assert registry.login_id(1) == registry.login_id(2) == "alice"


def test_scenario_login_then_broadcast(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.deliver(1, "#login alice")
    transport.deliver(1, "hello")
    transport.deliver(2, "hi")
    assert transport.inbox[1] == [
        "SERVER MSG> login accepted for 'alice'",
        "alice> hello",
        "ANON> hi",
    ]
    assert transport.inbox[2] == ["alice> hello", "ANON> hi"]


def test_other_hash_lines_are_plain_chat(transport, registry) -> None:
    transport.connect(1)
    transport.deliver(1, "#loginx alice")
    assert transport.inbox[1] == ["ANON> #loginx alice"]
    assert not is_login_command("#loginx alice")
    assert is_login_command("  #login alice")


def test_disconnect_is_idempotent(transport, registry) -> None:
    transport.connect(1)
    assert registry.on_disconnect(1) is not None
    assert registry.on_disconnect(1) is None
    assert registry.get_stats()["total"] == 0


def test_exception_removes_session_and_closes(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.on_exception(1, ConnectionResetError("reset"))
    assert registry.get_session(1) is None
    assert 1 not in transport.live
    assert registry.get_session(2) is not None


def test_exception_close_failure_is_swallowed() -> None:
    class BrokenTransport(FakeServerTransport):
        def close_client(self, handle: int) -> None:
            raise OSError("already gone")

    broken = BrokenTransport()
    reg = SessionRegistry(broken)
    reg.on_connect(1, None)
    reg.on_exception(1, RuntimeError("boom"))
    assert reg.get_session(1) is None


def test_message_from_unknown_handle_is_dropped(transport, registry) -> None:
    transport.connect(1)
    registry.on_message(42, "hello")
    assert transport.inbox[1] == []


def test_operator_message_is_prefixed_and_broadcast(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    assert registry.on_operator_message("maintenance at noon") == "SERVER MSG> maintenance at noon"
    assert transport.inbox[1] == ["SERVER MSG> maintenance at noon"]
    assert transport.inbox[2] == ["SERVER MSG> maintenance at noon"]


def test_stats(transport, registry) -> None:
    transport.connect(1)
    transport.connect(2)
    transport.deliver(2, "#login bob")
    assert registry.get_stats() == {"total": 2, "logged_in": 1}
