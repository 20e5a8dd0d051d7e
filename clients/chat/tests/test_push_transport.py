import json
import unittest

import aiohttp

from chat_sync import chat_api
from chat_sync.errors import TransportReceiveError
from chat_sync.models import MEDIA_PLACEHOLDER_TEXT, ConversationHandle
from chat_sync.push_transport import PushTransport, auth_frame, reconnect_delay, text_frame
from helpers.fake_chat_api import FakeChatApi, wait_until
from helpers.recording_sink import RecordingSink


def test_reconnect_delay_doubles_and_caps():
    delays = [reconnect_delay(attempt, 0.5, 4.0) for attempt in range(6)]
    assert delays == [0.5, 1.0, 2.0, 4.0, 4.0, 4.0]
    assert reconnect_delay(-3, 0.5, 4.0) == 0.5


def test_frame_builders_match_wire_shape():
    assert auth_frame("k") == {"type": "auth", "payload": {"key": "k"}}
    assert text_frame("c_1", "hi") == {"type": "text", "payload": {"conversationId": "c_1", "text": "hi"}}


class HandleFrameTests(unittest.TestCase):
    def setUp(self):
        self.recorder = RecordingSink(current="c_1")
        self.transport = PushTransport(self.recorder.sink(), None, "ws://unused")  # type: ignore[arg-type]
        self.transport._handle = ConversationHandle("c_1")

    def test_text_frame_becomes_record(self):
        self.transport.handle_frame(json.dumps({"type": "text", "id": "m_1", "payload": {"text": "hello"}}))

        self.assertEqual(len(self.recorder.records), 1)
        record = self.recorder.records[0]
        self.assertEqual((record.conversation_id, record.id, record.text), ("c_1", "m_1", "hello"))
        self.assertIsNone(record.user_id)

    def test_text_frame_without_text_uses_placeholder(self):
        self.transport.handle_frame(json.dumps({"type": "text", "id": "m_2", "payload": {}}))
        self.assertEqual(self.recorder.records[0].text, MEDIA_PLACEHOLDER_TEXT)

    def test_typing_frames_update_typing(self):
        self.transport.handle_frame(json.dumps({"type": "typing", "payload": {"typing": True}}))
        self.transport.handle_frame(json.dumps({"type": "typing", "payload": {"typing": False}}))
        self.assertEqual(self.recorder.typing, [True, False])

    def test_unknown_and_malformed_frames_are_dropped(self):
        with self.assertLogs("chat_sync", level="INFO") as logs:
            self.transport.handle_frame(json.dumps({"type": "presence", "payload": {}}))
            self.transport.handle_frame("{not json")
            self.transport.handle_frame(json.dumps(["list"]))
            self.transport.handle_frame(json.dumps({"type": "text", "payload": {"text": "no id"}}))
            self.transport.handle_frame(json.dumps({"type": "typing", "payload": {"typing": "yes"}}))

        self.assertEqual(self.recorder.records, [])
        self.assertEqual(self.recorder.typing, [])
        self.assertEqual(len(logs.output), 5)

    def test_unknown_frame_log_hides_key(self):
        with self.assertLogs("chat_sync", level="INFO") as logs:
            self.transport.handle_frame(json.dumps({"type": "session", "payload": {"key": "sk_live"}}))

        self.assertNotIn("sk_live", "\n".join(logs.output))
        self.assertIn("[REDACTED]", "\n".join(logs.output))

    def test_frame_for_other_conversation_is_discarded(self):
        self.transport.handle_frame(
            json.dumps({"type": "text", "id": "m_3", "payload": {"conversationId": "c_old", "text": "late"}})
        )
        self.assertEqual(self.recorder.records, [])


class PushTransportTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.api = FakeChatApi()
        await self.api.start()
        self.http = aiohttp.ClientSession()
        self.api_url = f"{self.api.api_base}/{self.api.webhook_id}"
        self.ws_url = self.api_url.replace("http://", "ws://") + "/realtime"
        self.credential = await chat_api.create_user(self.http, self.api_url)
        self.handle = await chat_api.create_conversation(self.http, self.api_url, self.credential.secret_key)
        self.recorder = RecordingSink(current=self.handle.conversation_id)
        self.transports: list[PushTransport] = []

    async def asyncTearDown(self):
        for transport in self.transports:
            await transport.close()
        await self.http.close()
        await self.api.close()

    def _transport(self, **kwargs) -> PushTransport:
        options = {"timeout_s": 5, "reconnect_initial_s": 0.01, "reconnect_max_s": 0.05}
        options.update(kwargs)
        transport = PushTransport(self.recorder.sink(), self.http, self.ws_url, **options)
        self.transports.append(transport)
        return transport

    async def test_start_authenticates_with_secret_key(self):
        transport = self._transport()
        await transport.start(self.handle, self.credential)

        await wait_until(lambda: len(self.api.auth_frames) == 1)
        self.assertEqual(self.api.auth_frames[0], auth_frame(self.credential.secret_key))
        self.assertTrue(transport.connected)

    async def test_send_writes_text_frame_and_reply_arrives(self):
        transport = self._transport()
        await transport.start(self.handle, self.credential)
        await wait_until(lambda: len(self.api.sockets) == 1)

        self.assertTrue(await transport.send("ping"))

        await wait_until(lambda: len(self.recorder.records) == 1 and self.recorder.typing == [True, False])
        self.assertEqual(self.api.sent_frames, [text_frame(self.handle.conversation_id, "ping")])
        self.assertEqual(self.recorder.records[0].text, "echo: ping")

    async def test_send_without_connection_fails(self):
        transport = self._transport()
        self.assertFalse(await transport.send("nobody"))

    async def test_reconnects_after_drop(self):
        transport = self._transport()
        await transport.start(self.handle, self.credential)
        await wait_until(lambda: len(self.api.sockets) == 1)

        await self.api.drop_sockets()

        await wait_until(lambda: self.api.realtime_connects == 2 and len(self.api.sockets) == 1)
        await self.api.push({"type": "text", "id": "m_after", "payload": {"text": "back"}})
        await wait_until(lambda: [r.id for r in self.recorder.records] == ["m_after"])
        self.assertEqual(self.recorder.errors, [])

    async def test_gives_up_after_max_attempts(self):
        transport = self._transport(reconnect_max_attempts=2)
        await transport.start(self.handle, self.credential)
        await wait_until(lambda: len(self.api.sockets) == 1)

        self.api.reject_realtime = True
        await self.api.drop_sockets()

        await wait_until(lambda: len(self.recorder.errors) == 1)
        self.assertIsInstance(self.recorder.errors[0], TransportReceiveError)
        self.assertFalse(transport.running)
        self.assertFalse(transport.connected)

        self.api.reject_realtime = False
        await transport.start(self.handle, self.credential)
        self.assertTrue(transport.connected)

    async def test_no_reconnect_when_disabled(self):
        transport = self._transport(reconnect_max_attempts=0)
        await transport.start(self.handle, self.credential)
        await wait_until(lambda: len(self.api.sockets) == 1)

        await self.api.drop_sockets()

        await wait_until(lambda: len(self.recorder.errors) == 1)
        self.assertEqual(self.api.realtime_connects, 1)

    async def test_stop_closes_connection_without_error(self):
        transport = self._transport()
        await transport.start(self.handle, self.credential)
        await wait_until(lambda: len(self.api.sockets) == 1)

        await transport.stop()

        await wait_until(lambda: len(self.api.sockets) == 0)
        self.assertFalse(transport.running)
        self.assertEqual(self.recorder.errors, [])


if __name__ == "__main__":
    unittest.main()
