"""
Tests for the message router.

Covers dispatch of each inbound message kind, handling of undecodable
input, and the outbound chat path.
"""

import pytest

from conftest import LOCAL_ADDRESS, LOCAL_NAME, make_node
from protocol.codec import decode, encode
from protocol.models import Envelope, MessageKind
from protocol.router import MessageRouter
from substrate.gossip import BroadcastError

PEER = "10.0.0.2:7000"


@pytest.fixture
def message_router(identity, directory, broadcast, presenter):
    return MessageRouter(identity, directory, broadcast, presenter)


class TestInboundIdentityBatch:

    def test_applies_names(self, message_router, directory):
        directory.on_peer_reachable(make_node(PEER))

        message_router.on_broadcast(PEER, encode(Envelope.identity_batch({PEER: "bob"})))

        assert directory.resolve_name(PEER) == "bob"

    def test_empty_batch_leaves_directory_unchanged(self, message_router, directory, caplog):
        directory.on_peer_reachable(make_node(PEER))
        before = directory.roster()

        message_router.on_broadcast(PEER, encode(Envelope.identity_batch({})))

        assert directory.roster() == before
        assert "empty username list" in caplog.text

    def test_null_batch_leaves_directory_unchanged(self, message_router, directory):
        directory.on_peer_reachable(make_node(PEER))

        message_router.on_broadcast(PEER, encode(Envelope(kind=MessageKind.IDENTITY_BATCH)))

        assert directory.get(PEER).display_name == ""


class TestInboundIdentityRequest:

    def test_request_for_us_replies_with_snapshot(self, message_router, directory, broadcast):
        directory.on_peer_reachable(make_node(PEER))
        directory.apply_identity_batch({PEER: "bob"})

        message_router.on_broadcast(PEER, encode(Envelope.identity_request(LOCAL_ADDRESS)))

        assert len(broadcast.sent) == 1
        reply = decode(broadcast.sent[0])
        assert reply.kind == MessageKind.IDENTITY_BATCH
        assert reply.usernames == {PEER: "bob", LOCAL_ADDRESS: LOCAL_NAME}

    def test_request_for_someone_else_is_ignored(self, message_router, directory, broadcast):
        directory.on_peer_reachable(make_node(PEER))
        before = directory.roster()

        message_router.on_broadcast(PEER, encode(Envelope.identity_request("10.0.0.3:7000")))

        assert broadcast.sent == []
        assert directory.roster() == before

    def test_reply_failure_is_logged(self, identity, directory, presenter, failing_broadcast, caplog):
        message_router = MessageRouter(identity, directory, failing_broadcast, presenter)

        message_router.on_broadcast(PEER, encode(Envelope.identity_request(LOCAL_ADDRESS)))

        assert "Tried to broadcast usernames but failed" in caplog.text


class TestInboundChat:

    def test_known_sender_by_name(self, message_router, directory, presenter):
        directory.on_peer_reachable(make_node(PEER))
        directory.apply_identity_batch({PEER: "bob"})

        message_router.on_broadcast(PEER, encode(Envelope.chat("hi all")))

        assert presenter.transcript == ["bob: hi all"]

    def test_unnamed_sender_by_address(self, message_router, directory, presenter):
        directory.on_peer_reachable(make_node(PEER))

        message_router.on_broadcast(PEER, encode(Envelope.chat("hi")))

        assert presenter.transcript == [f"{PEER}: hi"]

    def test_unknown_sender_by_address(self, message_router, presenter):
        message_router.on_broadcast("10.9.9.9:1", encode(Envelope.chat("who am i")))

        assert presenter.transcript == ["10.9.9.9:1: who am i"]


class TestInboundGarbage:

    def test_undecodable_bytes_dropped(self, message_router, directory, broadcast, presenter, caplog):
        message_router.on_broadcast(PEER, b"\x00\x01garbage")

        assert broadcast.sent == []
        assert presenter.transcript == []
        assert len(directory) == 0
        assert f"Failed to receive message from {PEER}" in caplog.text


class TestSendChat:

    def test_trims_echoes_and_broadcasts(self, message_router, presenter, broadcast):
        assert message_router.send_chat("  hello  ") is True

        assert presenter.transcript == [f"{LOCAL_NAME}: hello"]
        assert len(broadcast.sent) == 1
        envelope = decode(broadcast.sent[0])
        assert envelope.kind == MessageKind.CHAT
        assert envelope.body == "hello"

    @pytest.mark.parametrize("text", ["", "   ", "\n\t "])
    def test_blank_is_noop(self, message_router, presenter, broadcast, text):
        assert message_router.send_chat(text) is False

        assert presenter.transcript == []
        assert broadcast.sent == []

    def test_broadcast_failure_propagates(self, identity, directory, presenter, failing_broadcast):
        message_router = MessageRouter(identity, directory, failing_broadcast, presenter)

        with pytest.raises(BroadcastError):
            message_router.send_chat("hello")

        # Local echo happens before the send is attempted
        assert presenter.transcript == [f"{LOCAL_NAME}: hello"]
