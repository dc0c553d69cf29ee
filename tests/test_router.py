"""Tests for inbound frame routing and event dispatch."""

import asyncio
import logging

import pytest
from yowlink.crypto import EnvelopeCipher
from yowlink.envelope import encode_envelope
from yowlink.events import (
    ChannelClosed,
    Connected,
    DecryptionFailed,
    Disconnected,
    EventChannel,
    FrameReceived,
    MessageDecrypted,
    dispatch_events,
)
from yowlink.frame import Frame, FrameType
from yowlink.router import MessageRouter
from yowlink.storage import SessionStore
from .fake_stream import drain_events
from .test_vectors import ALICE_ID, BOB_ID, SHARED_ROOT_KEY_HEX


def _frame(frame_type: int, payload: bytes = b"", frame_id: int = 7) -> Frame:
    return Frame(type=frame_type, id=frame_id, timestamp=1_700_000_000, payload=payload)


@pytest.fixture
def alice():
    store = SessionStore()
    store.establish(BOB_ID, bytes.fromhex(SHARED_ROOT_KEY_HEX))
    return EnvelopeCipher(store)


@pytest.fixture
def bob_router():
    """Router for Bob, who shares a session with Alice."""
    store = SessionStore()
    store.establish(ALICE_ID, bytes.fromhex(SHARED_ROOT_KEY_HEX))
    return MessageRouter(EnvelopeCipher(store), EventChannel())


class TestMessageRouter:
    """Test frame-to-event routing."""

    @pytest.mark.parametrize("frame_type", [t for t in FrameType if t is not FrameType.ENCRYPTED])
    def test_known_types(self, bob_router, frame_type) -> None:
        """Each known type becomes one FrameReceived with the raw payload."""
        frame = _frame(frame_type, b'{"to":"bob"}')

        bob_router.route(frame)

        events = drain_events(bob_router.events)
        assert events == [FrameReceived(type=frame_type, frame=frame)]
        assert events[0].raw == b'{"to":"bob"}'

    def test_unknown_type_dropped(self, bob_router, caplog) -> None:
        """Unknown codes publish nothing and are logged."""
        with caplog.at_level(logging.WARNING, logger="yowlink.router"):
            bob_router.route(_frame(0x42))

        assert drain_events(bob_router.events) == []
        assert "unknown type 0x42" in caplog.text
        assert bob_router.stats().dropped_unknown == 1

    def test_encrypted_frame_decrypted(self, alice, bob_router) -> None:
        """A valid envelope yields FrameReceived then MessageDecrypted."""
        payload = encode_envelope(alice.encrypt(BOB_ID, {"text": "hi"}), ALICE_ID)

        bob_router.route(_frame(FrameType.ENCRYPTED, payload, frame_id=99))

        received, decrypted = drain_events(bob_router.events)
        assert isinstance(received, FrameReceived)
        assert decrypted == MessageDecrypted(peer_id=ALICE_ID, plaintext={"text": "hi"}, frame_id=99)

    def test_tampered_envelope(self, alice, bob_router) -> None:
        """A MAC failure publishes DecryptionFailed and no plaintext."""
        payload = bytearray(encode_envelope(alice.encrypt(BOB_ID, "hi"), ALICE_ID))
        payload[-1] ^= 0xFF

        bob_router.route(_frame(FrameType.ENCRYPTED, bytes(payload)))

        events = drain_events(bob_router.events)
        assert not any(isinstance(e, MessageDecrypted) for e in events)
        failure = events[-1]
        assert isinstance(failure, DecryptionFailed)
        assert failure.peer_id == ALICE_ID

    def test_unknown_sender(self, bob_router) -> None:
        """An envelope from a peer with no session is rejected."""
        stranger = EnvelopeCipher(SessionStore())
        payload = encode_envelope(stranger.encrypt(BOB_ID, "hi"), "mallory@example.org")

        bob_router.route(_frame(FrameType.ENCRYPTED, payload))

        failure = drain_events(bob_router.events)[-1]
        assert isinstance(failure, DecryptionFailed)
        assert failure.peer_id == "mallory@example.org"

    def test_garbage_envelope(self, bob_router) -> None:
        """An undecodable envelope has no known sender."""
        bob_router.route(_frame(FrameType.ENCRYPTED, b"garbage"))

        failure = drain_events(bob_router.events)[-1]
        assert isinstance(failure, DecryptionFailed)
        assert failure.peer_id is None

    def test_stats(self, alice, bob_router) -> None:
        bob_router.route(_frame(FrameType.TEXT))
        bob_router.route(_frame(FrameType.TEXT))
        bob_router.route(_frame(FrameType.ENCRYPTED, encode_envelope(alice.encrypt(BOB_ID, "x"), ALICE_ID)))
        bob_router.route(_frame(FrameType.ENCRYPTED, b"bad"))

        stats = bob_router.stats()
        assert stats.routed == {"text": 2, "encrypted": 2}
        assert stats.decrypted == 1
        assert stats.decryption_failures == 1


class TestEventChannel:
    """Test the event channel and dispatcher."""

    def test_order_preserved(self) -> None:
        async def scenario():
            channel = EventChannel()
            for generation in range(5):
                channel.publish(Connected(endpoint="a:1", generation=generation))
            channel.close()
            return [event.generation async for event in channel]

        assert asyncio.run(scenario()) == [0, 1, 2, 3, 4]

    def test_closed_channel(self) -> None:
        async def scenario():
            channel = EventChannel()
            channel.close()
            channel.publish(Connected(endpoint="a:1", generation=1))
            assert channel.qsize() == 0
            with pytest.raises(ChannelClosed):
                await channel.get()

        asyncio.run(scenario())

    def test_dispatch_sync_and_async_handlers(self) -> None:
        """Handlers are chosen by event class; coroutines are awaited."""
        seen = []

        def on_connected(event) -> None:
            seen.append(("connected", event.generation))

        async def on_disconnected(event) -> None:
            await asyncio.sleep(0)
            seen.append(("disconnected", event.reason))

        async def scenario():
            channel = EventChannel()
            channel.publish(Connected(endpoint="a:1", generation=1))
            channel.publish(FrameReceived(type=FrameType.TEXT, frame=_frame(FrameType.TEXT)))
            channel.publish(Disconnected(reason="eof", generation=1))
            channel.close()
            await dispatch_events(channel, {Connected: on_connected, Disconnected: on_disconnected})

        asyncio.run(scenario())

        assert seen == [("connected", 1), ("disconnected", "eof")]

    def test_failing_handler_does_not_stop_dispatch(self, caplog) -> None:
        seen = []

        def explode(event) -> None:
            raise RuntimeError("boom")

        async def scenario():
            channel = EventChannel()
            channel.publish(Connected(endpoint="a:1", generation=1))
            channel.publish(Disconnected(reason="eof", generation=1))
            channel.close()
            await dispatch_events(channel, {Connected: explode, Disconnected: seen.append})

        with caplog.at_level(logging.ERROR, logger="yowlink.events"):
            asyncio.run(scenario())

        assert len(seen) == 1
        assert "Handler for Connected failed" in caplog.text


class TestForgedSenders:
    """Envelopes naming unknown senders must not leave state behind."""

    def test_forged_sender_ids_leave_no_locks(self) -> None:
        store = SessionStore()
        router = MessageRouter(EnvelopeCipher(store), EventChannel())
        sealer = EnvelopeCipher(SessionStore())
        envelope = sealer.encrypt(BOB_ID, "hi")

        for n in range(500):
            payload = encode_envelope(envelope, f"forged-{n}")
            router.route(_frame(FrameType.ENCRYPTED, payload, frame_id=n))

        assert len(store) == 0
        assert store._peer_locks == {}
        assert router.stats().decryption_failures == 500
