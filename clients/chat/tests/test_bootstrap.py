import tempfile
import unittest
from pathlib import Path

import aiohttp

from chat_sync.bootstrap import SessionBootstrapper
from chat_sync.errors import ConversationCreationError, IdentityCreationError
from chat_sync.models import Credential
from chat_sync.session_store import SessionStore
from helpers.fake_chat_api import FakeChatApi


class BootstrapTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.api = FakeChatApi()
        await self.api.start()
        self.http = aiohttp.ClientSession()
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SessionStore(Path(self.tmp.name) / "credentials.json")
        self.bootstrapper = SessionBootstrapper(
            self.http, f"{self.api.api_base}/{self.api.webhook_id}", self.store, timeout_s=5
        )

    async def asyncTearDown(self):
        await self.http.close()
        await self.api.close()
        self.tmp.cleanup()

    async def test_fresh_install_creates_and_persists_identity(self):
        result = await self.bootstrapper.bootstrap()

        self.assertEqual(result.credential.user_id, "u_1")
        self.assertEqual(result.handle.conversation_id, "c_1")
        self.assertEqual(self.store.load(), result.credential)

    async def test_stored_identity_is_reused(self):
        self.api.users["key_existing"] = "u_existing"
        self.store.save(Credential(user_id="u_existing", secret_key="key_existing"))

        result = await self.bootstrapper.bootstrap()

        self.assertEqual(result.credential.user_id, "u_existing")
        self.assertEqual(set(self.api.users), {"key_existing"})

    async def test_user_creation_failure(self):
        self.api.fail_user_status = 503

        with self.assertRaises(IdentityCreationError):
            await self.bootstrapper.bootstrap()
        self.assertIsNone(self.store.load())

    async def test_conversation_creation_failure_keeps_identity(self):
        self.api.fail_conversation_status = 500

        with self.assertRaises(ConversationCreationError):
            await self.bootstrapper.bootstrap()
        self.assertIsNotNone(self.store.load())

    async def test_unreachable_remote_is_identity_failure(self):
        bootstrapper = SessionBootstrapper(self.http, "http://127.0.0.1:9/wh", self.store, timeout_s=2)
        with self.assertRaises(IdentityCreationError):
            await bootstrapper.bootstrap()

    async def test_secret_never_appears_in_error(self):
        self.api.users["key_secret_value"] = "u_existing"
        self.store.save(Credential(user_id="u_existing", secret_key="key_secret_value"))
        self.api.fail_conversation_status = 500

        with self.assertRaises(ConversationCreationError) as ctx:
            await self.bootstrapper.bootstrap()
        self.assertNotIn("key_secret_value", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
