"""Tests for the chat client."""

import asyncio
import base64
import json
from dataclasses import replace

import pytest
from yowlink.client import ChatClient
from yowlink.envelope import decode_envelope
from yowlink.events import DecryptionFailed, MessageDecrypted
from yowlink.frame import FrameType
from yowlink.storage import SessionStore
from yowlink.types import IntegrityError, NotConnectedError, UnknownSessionError
from .fake_stream import FakeOpener, make_config, wait_until
from .test_vectors import ALICE_ID, BOB_ID, SHARED_ROOT_KEY_HEX


def _client(opener, local_id=ALICE_ID, peer_id=BOB_ID) -> ChatClient:
    sessions = SessionStore()
    sessions.establish(peer_id, bytes.fromhex(SHARED_ROOT_KEY_HEX))
    return ChatClient(make_config(), local_id=local_id, sessions=sessions, opener=opener)


def _payload(frame) -> dict:
    return json.loads(frame.payload)


class TestClientSend:
    """Test the typed send helpers."""

    def test_text_and_group(self) -> None:
        async def scenario():
            opener = FakeOpener()
            async with _client(opener) as client:
                await client.send_text(BOB_ID, "hi")
                await client.send_group_message("group-1", "hello all")
            return opener.streams[0][1].frames()

        text, group = asyncio.run(scenario())

        assert text.type == FrameType.TEXT
        assert _payload(text) == {"to": BOB_ID, "text": "hi"}
        assert group.type == FrameType.GROUP
        assert _payload(group) == {"groupId": "group-1", "text": "hello all"}

    def test_media_is_base64(self) -> None:
        async def scenario():
            opener = FakeOpener()
            async with _client(opener) as client:
                await client.send_media(BOB_ID, b"\x89PNG\r\n", media_type="image")
            return opener.streams[0][1].frames()

        (frame,) = asyncio.run(scenario())

        payload = _payload(frame)
        assert frame.type == FrameType.MEDIA
        assert base64.b64decode(payload["media"]) == b"\x89PNG\r\n"
        assert payload["type"] == "image"

    def test_presence_typing_and_receipts(self) -> None:
        async def scenario():
            opener = FakeOpener()
            async with _client(opener) as client:
                await client.send_presence(True)
                await client.send_typing(BOB_ID, True)
                await client.send_read_receipt(1234, BOB_ID)
                await client.send_delivery_receipt(1234, BOB_ID)
            return opener.streams[0][1].frames()

        presence, typing, read, delivered = asyncio.run(scenario())

        assert presence.type == FrameType.PRESENCE
        assert _payload(presence)["online"] is True
        assert isinstance(_payload(presence)["lastSeen"], int)
        assert _payload(typing) == {"to": BOB_ID, "typing": True}
        assert read.type == FrameType.READ_RECEIPT
        assert _payload(read) == {"messageId": 1234, "from": BOB_ID}
        assert delivered.type == FrameType.DELIVERY_RECEIPT

    def test_send_before_connect(self) -> None:
        async def scenario():
            client = _client(FakeOpener())
            with pytest.raises(NotConnectedError):
                await client.send_text(BOB_ID, "hi")

        asyncio.run(scenario())


class TestClientEncryption:
    """Test encrypted sends and inbound envelopes."""

    def test_send_encrypted_carries_sender(self) -> None:
        async def scenario():
            opener = FakeOpener()
            async with _client(opener) as client:
                await client.send_encrypted(BOB_ID, "secret")
            return opener.streams[0][1].frames()

        (frame,) = asyncio.run(scenario())

        sender, envelope = decode_envelope(frame.payload)
        assert frame.type == FrameType.ENCRYPTED
        assert sender == ALICE_ID
        assert b"secret" not in envelope.ciphertext

    def test_send_encrypted_before_connect(self) -> None:
        """A refused send neither creates a session nor spends a counter."""
        async def scenario():
            client = _client(FakeOpener())
            with pytest.raises(NotConnectedError):
                await client.send_encrypted(BOB_ID, "secret")
            with pytest.raises(NotConnectedError):
                await client.send_encrypted("carol@example.org", "secret")
            return client

        client = asyncio.run(scenario())

        assert client.sessions.get(BOB_ID).message_counter == 0
        assert not client.sessions.has_session("carol@example.org")

    def test_decrypt_from_peer(self) -> None:
        alice = _client(FakeOpener())
        bob = _client(FakeOpener(), local_id=BOB_ID, peer_id=ALICE_ID)

        envelope = alice.encrypt_for_peer(BOB_ID, {"text": "hi"})

        assert bob.decrypt_from_peer(ALICE_ID, envelope) == {"text": "hi"}
        with pytest.raises(UnknownSessionError):
            bob.decrypt_from_peer("mallory@example.org", envelope)
        with pytest.raises(IntegrityError):
            alice.decrypt_from_peer(BOB_ID, replace(envelope, mac=bytes(32)))

    def test_end_to_end_between_clients(self) -> None:
        """Frames Alice writes, fed to Bob's stream, arrive decrypted."""
        async def scenario():
            alice_opener = FakeOpener()
            bob_opener = FakeOpener()
            alice = _client(alice_opener)
            bob = _client(bob_opener, local_id=BOB_ID, peer_id=ALICE_ID)
            received = []

            await alice.connect()
            await bob.connect()
            await alice.send_encrypted(BOB_ID, "first")
            await alice.send_encrypted(BOB_ID, {"n": 2})

            wire = bytes(alice_opener.writer.data)
            bob_opener.reader.feed_data(wire[:7])
            bob_opener.reader.feed_data(wire[7:])

            consumer = asyncio.create_task(bob.run({
                MessageDecrypted: received.append,
                DecryptionFailed: received.append,
            }))
            await wait_until(lambda: len(received) == 2)

            await alice.disconnect()
            await bob.disconnect()
            await consumer

            return received, bob.status()

        received, status = asyncio.run(scenario())

        assert [e.plaintext for e in received] == ["first", {"n": 2}]
        assert all(e.peer_id == ALICE_ID for e in received)
        assert status.router.decrypted == 2
        assert status.active_sessions == 1
        assert not status.connection.connected


class TestClientStatus:
    """Test status reporting."""

    def test_status_before_connect(self) -> None:
        client = _client(FakeOpener())

        status = client.status()

        assert not client.is_connected
        assert status.connection.generation == 0
        assert status.active_sessions == 1
        assert status.router.routed == {}
