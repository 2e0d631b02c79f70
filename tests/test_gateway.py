# -*- coding: utf-8 -*-

from __future__ import annotations

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any, List

import httpx


class TestChatGateway(unittest.IsolatedAsyncioTestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls._tmp = Path(tempfile.mkdtemp(prefix="coachchat-test-"))
        data_root = cls._tmp / "data"
        os.environ["COACHCHAT_DATA_ROOT"] = str(data_root)
        os.environ["COACHCHAT_DB_PATH"] = str(data_root / "coachchat.db")
        os.environ["COACHCHAT_JWT_SECRET"] = "test-secret"

        # Ensure settings/app reflect the env vars above.
        for name in list(sys.modules.keys()):
            if name == "coachchat" or name.startswith("coachchat."):
                sys.modules.pop(name, None)

        from coachchat import errors  # noqa: WPS433 (import inside test for env control)
        from coachchat.api import app
        from coachchat.auth.security import create_access_token
        from coachchat.auth.storage import create_user
        from coachchat.client import Attachment, ChatGateway, MessageDraft, SessionStore

        cls.errors = errors
        cls.app = app
        cls.ChatGateway = ChatGateway
        cls.MessageDraft = MessageDraft
        cls.Attachment = Attachment
        cls.SessionStore = SessionStore

        cls.client_user = create_user(email="cem@example.com", role="client", first_name="Cem")
        cls.dietitian = create_user(email="dila@example.com", role="dietitian", first_name="Dila")
        cls.other_dietitian = create_user(email="deniz@example.com", role="dietitian", first_name="Deniz")
        cls.client_token = create_access_token(user_id=cls.client_user["id"], role="client")
        cls.dietitian_token = create_access_token(user_id=cls.dietitian["id"], role="dietitian")

    @classmethod
    def tearDownClass(cls) -> None:
        shutil.rmtree(cls._tmp, ignore_errors=True)

    async def asyncSetUp(self) -> None:
        self.session = self.SessionStore(token=self.client_token)
        self.gateway = self._gateway(self.session)

    async def asyncTearDown(self) -> None:
        await self.gateway.aclose()

    def _gateway(self, session, transport=None):
        return self.ChatGateway(
            session,
            base_url="http://testserver",
            transport=transport or httpx.ASGITransport(app=self.app),
        )

    async def test_current_user(self) -> None:
        me = await self.gateway.get_current_user()
        self.assertEqual(me.id, self.client_user["id"])
        self.assertEqual(me.role, "client")
        self.assertEqual(me.display_name, "Cem")

    async def test_create_room_is_an_upsert(self) -> None:
        first = await self.gateway.create_room(self.dietitian["id"])
        second = await self.gateway.create_room(self.dietitian["id"])
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.client.id, self.client_user["id"])
        self.assertEqual(first.dietitian.id, self.dietitian["id"])

        rooms = await self.gateway.list_rooms()
        self.assertEqual([r.id for r in rooms].count(first.id), 1)

        async with self._gateway(self.SessionStore(token=self.dietitian_token)) as theirs:
            self.assertIn(first.id, [r.id for r in await theirs.list_rooms()])

    async def test_create_room_with_same_role_is_rejected(self) -> None:
        async with self._gateway(self.SessionStore(token=self.dietitian_token)) as theirs:
            with self.assertRaises(self.errors.GatewayError) as ctx:
                await theirs.create_room(self.other_dietitian["id"])
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertFalse(ctx.exception.transient)

    async def test_send_text_and_read_history(self) -> None:
        room = await self.gateway.create_room(self.other_dietitian["id"])

        sent = await self.gateway.send_message(room.id, self.MessageDraft(content="Lunch: lentil soup"))

        self.assertEqual(sent.room_id, room.id)
        self.assertEqual(sent.sender.id, self.client_user["id"])
        self.assertEqual(sent.content, "Lunch: lentil soup")
        self.assertFalse(sent.has_attachment)

        history = await self.gateway.list_messages(room.id)
        self.assertEqual(history[-1].id, sent.id)

        rooms = await self.gateway.list_rooms()
        listed = next(r for r in rooms if r.id == room.id)
        assert listed.last_message is not None
        self.assertEqual(listed.last_message.content, "Lunch: lentil soup")

    async def test_send_image_attachment_as_multipart(self) -> None:
        room = await self.gateway.create_room(self.dietitian["id"])
        draft = self.MessageDraft(
            attachment=self.Attachment(
                kind="image",
                filename="plate.png",
                content=b"\x89PNG\r\n\x1a\nfake",
                content_type="image/png",
            )
        )

        sent = await self.gateway.send_message(room.id, draft)

        self.assertEqual(sent.content, "")
        self.assertIsNotNone(sent.image)
        self.assertIsNone(sent.file)
        self.assertTrue(str(sent.image).endswith(".png"))

    async def test_history_of_a_foreign_room_is_not_found(self) -> None:
        with self.assertRaises(self.errors.GatewayError) as ctx:
            await self.gateway.list_messages(987654)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_rejected_token_clears_the_session(self) -> None:
        session = self.SessionStore(token="not-a-token")
        async with self._gateway(session) as gateway:
            with self.assertRaises(self.errors.AuthExpiredError):
                await gateway.list_rooms()
        self.assertIsNone(session.token)
        self.assertFalse(session.is_authenticated)


class TestChatGatewayTransport(unittest.IsolatedAsyncioTestCase):
    """Retry and validation rules, checked against a recording mock transport."""

    async def asyncSetUp(self) -> None:
        from coachchat.client import ChatGateway, MessageDraft, SessionStore  # noqa: WPS433
        from coachchat.errors import AuthExpiredError, GatewayError, ValidationError

        self.MessageDraft = MessageDraft
        self.AuthExpiredError = AuthExpiredError
        self.GatewayError = GatewayError
        self.ValidationError = ValidationError

        self.requests: List[httpx.Request] = []
        self.responses: List[Any] = []
        self.session = SessionStore(token="t")
        self.gateway = ChatGateway(
            self.session,
            base_url="http://testserver",
            transport=httpx.MockTransport(self._handle),
        )

    async def asyncTearDown(self) -> None:
        await self.gateway.aclose()

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, type) and issubclass(item, httpx.TransportError):
                raise item("network down", request=request)
            return item
        return httpx.Response(200, json=[])

    async def test_empty_send_makes_no_request(self) -> None:
        with self.assertRaises(self.ValidationError):
            await self.gateway.send_message(1, self.MessageDraft(content=""))
        with self.assertRaises(self.ValidationError):
            await self.gateway.send_message(1, self.MessageDraft(content="   \n"))
        self.assertEqual(self.requests, [])

    async def test_missing_token_makes_no_request(self) -> None:
        self.session.invalidate()
        with self.assertRaises(self.AuthExpiredError):
            await self.gateway.list_rooms()
        self.assertEqual(self.requests, [])

    async def test_unauthorized_clears_token_until_next_sign_in(self) -> None:
        self.responses = [httpx.Response(401, json={"detail": "Token expired"})]
        with self.assertRaises(self.AuthExpiredError) as ctx:
            await self.gateway.list_rooms()
        self.assertEqual(ctx.exception.message, "Token expired")
        self.assertEqual(len(self.requests), 1)
        self.assertFalse(self.session.is_authenticated)

        self.session.sign_in("fresh")
        await self.gateway.list_rooms()
        self.assertEqual(self.requests[-1].headers["authorization"], "Bearer fresh")

    async def test_bearer_header_is_sent(self) -> None:
        await self.gateway.list_rooms()
        self.assertEqual(self.requests[0].headers["authorization"], "Bearer t")

    async def test_read_is_retried_once_on_server_error(self) -> None:
        self.responses = [httpx.Response(503, json={"detail": "busy"}), httpx.Response(200, json=[])]
        self.assertEqual(await self.gateway.list_rooms(), [])
        self.assertEqual(len(self.requests), 2)

    async def test_read_gives_up_after_one_retry(self) -> None:
        self.responses = [httpx.Response(503), httpx.Response(502)]
        with self.assertRaises(self.GatewayError) as ctx:
            await self.gateway.list_messages(1)
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(len(self.requests), 2)

    async def test_read_timeout_is_retried_once_then_raised(self) -> None:
        self.responses = [httpx.ConnectTimeout, httpx.ConnectTimeout]
        with self.assertRaises(self.GatewayError) as ctx:
            await self.gateway.list_messages(1)
        self.assertTrue(ctx.exception.transient)
        self.assertIsNone(ctx.exception.status_code)
        self.assertEqual(len(self.requests), 2)

    async def test_read_recovers_after_one_connection_error(self) -> None:
        self.responses = [httpx.ConnectError, httpx.Response(200, json=[])]
        self.assertEqual(await self.gateway.list_messages(1), [])
        self.assertEqual(len(self.requests), 2)

    async def test_send_is_not_retried_after_timeout_or_connection_error(self) -> None:
        for error in (httpx.ConnectTimeout, httpx.ConnectError):
            self.requests.clear()
            self.responses = [error]
            with self.assertRaises(self.GatewayError) as ctx:
                await self.gateway.send_message(1, self.MessageDraft(content="hi"))
            self.assertTrue(ctx.exception.transient)
            self.assertEqual(len(self.requests), 1)

    async def test_client_errors_are_not_retried(self) -> None:
        self.responses = [httpx.Response(404, json={"detail": "Chat room not found"})]
        with self.assertRaises(self.GatewayError) as ctx:
            await self.gateway.list_messages(1)
        self.assertEqual(ctx.exception.details, "Chat room not found")
        self.assertEqual(len(self.requests), 1)

    async def test_send_is_never_retried(self) -> None:
        self.responses = [httpx.Response(503)]
        with self.assertRaises(self.GatewayError) as ctx:
            await self.gateway.send_message(1, self.MessageDraft(content="hi"))
        self.assertTrue(ctx.exception.transient)
        self.assertEqual(len(self.requests), 1)

    async def test_unexpected_payload_is_a_gateway_error(self) -> None:
        self.responses = [httpx.Response(200, json={"rooms": []})]
        with self.assertRaises(self.GatewayError):
            await self.gateway.list_rooms()


if __name__ == "__main__":
    unittest.main()
