# -*- coding: utf-8 -*-

from __future__ import annotations

import asyncio
import json
import unittest
from typing import List, Optional

from coachchat.client.channel import RealtimeChannel, backoff_delay, channel_url
from coachchat.client.models import ConnectionStatus, InboundFrame


class _FakeSocket:
    """Async-iterable socket fed from a queue; ``None`` ends the stream, an exception is raised."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self) -> "_FakeSocket":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def __aiter__(self) -> "_FakeSocket":
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class _Connector:
    """Fails ``failures`` times, then hands out ``_FakeSocket`` objects."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.urls: List[str] = []
        self.sockets: List[_FakeSocket] = []
        self.opened = asyncio.Event()

    def __call__(self, url: str) -> _FakeSocket:
        self.urls.append(url)
        if len(self.urls) <= self.failures:
            raise OSError("connection refused")
        sock = _FakeSocket()
        self.sockets.append(sock)
        self.opened.set()
        return sock


class TestBackoff(unittest.TestCase):
    def test_delay_doubles_and_caps(self) -> None:
        self.assertEqual([backoff_delay(a, 1.0, 30.0) for a in range(7)], [1, 2, 4, 8, 16, 30, 30])

    def test_channel_url_carries_room_and_token(self) -> None:
        self.assertEqual(channel_url("ws://h:8000/", 7), "ws://h:8000/ws/chat/7/")
        self.assertEqual(channel_url("wss://h", 7, "a.b.c"), "wss://h/ws/chat/7/?token=a.b.c")


class TestRealtimeChannel(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.frames: List[InboundFrame] = []
        self.statuses: List[ConnectionStatus] = []
        self.delays: List[float] = []

    async def _on_frame(self, frame: InboundFrame) -> None:
        self.frames.append(frame)

    async def _sleep(self, delay: float) -> None:
        self.delays.append(delay)

    def _channel(self, connector: _Connector, *, max_attempts: int = 5, on_frame=None, on_status=None) -> RealtimeChannel:
        return RealtimeChannel(
            1,
            on_frame or self._on_frame,
            url="ws://test/ws/chat/1/",
            base_delay=1.0,
            max_delay=30.0,
            max_attempts=max_attempts,
            connector=connector,
            sleep=self._sleep,
            on_status=on_status or self.statuses.append,
        )

    async def test_gives_up_after_max_attempts_with_exponential_delays(self) -> None:
        connector = _Connector(failures=100)
        channel = self._channel(connector, max_attempts=5)

        channel.start()
        await asyncio.wait_for(channel.wait(), timeout=2)

        self.assertEqual(self.delays, [1, 2, 4, 8, 16])
        self.assertEqual(channel.status, ConnectionStatus.FAILED)
        # Initial connect plus five reconnects.
        self.assertEqual(len(connector.urls), 6)

        await asyncio.sleep(0)
        self.assertEqual(len(connector.urls), 6)
        await channel.close()

    async def test_delays_are_capped_at_max_delay(self) -> None:
        connector = _Connector(failures=100)
        channel = self._channel(connector, max_attempts=7)
        channel.start()
        await asyncio.wait_for(channel.wait(), timeout=2)
        self.assertEqual(self.delays, [1, 2, 4, 8, 16, 30, 30])

    async def test_successful_open_resets_attempts_and_dispatches_frames(self) -> None:
        connector = _Connector(failures=2)
        channel = self._channel(connector)
        channel.start()
        await asyncio.wait_for(connector.opened.wait(), timeout=2)

        self.assertEqual(channel.status, ConnectionStatus.OPEN)
        self.assertEqual(channel.attempt, 0)
        self.assertEqual(self.delays, [1, 2])

        sock = connector.sockets[0]
        await sock.queue.put(json.dumps({"type": "chat_message"}))
        await sock.queue.put("not json")
        await sock.queue.put(json.dumps({"type": "typing"}))
        await sock.queue.put(b'{"type": "chat_message", "message_data": {"id": 3, "chat_room": 1, "sender": {"id": 2}, "content": "ok", "created_at": "2024-05-01T09:00:00Z"}}')
        for _ in range(20):
            if len(self.frames) == 2:
                break
            await asyncio.sleep(0)

        self.assertEqual(len(self.frames), 2)
        self.assertIsNone(self.frames[0].message_data)
        message = self.frames[1].message_data
        assert message is not None
        self.assertEqual(message.id, 3)
        await channel.close()

    async def test_server_close_triggers_backoff_then_reconnect(self) -> None:
        connector = _Connector()
        channel = self._channel(connector)
        channel.start()
        await asyncio.wait_for(connector.opened.wait(), timeout=2)

        connector.opened.clear()
        await connector.sockets[0].queue.put(None)
        await asyncio.wait_for(connector.opened.wait(), timeout=2)

        self.assertEqual(self.delays, [1])
        self.assertEqual(len(connector.urls), 2)
        self.assertIn(ConnectionStatus.BACKOFF, self.statuses)
        self.assertEqual(channel.status, ConnectionStatus.OPEN)
        await channel.close()

    async def test_close_is_terminal(self) -> None:
        connector = _Connector()
        channel = self._channel(connector)
        channel.start()
        await asyncio.wait_for(connector.opened.wait(), timeout=2)

        await channel.close()
        await asyncio.sleep(0)

        self.assertEqual(channel.status, ConnectionStatus.CLOSED)
        self.assertEqual(self.statuses[-1], ConnectionStatus.CLOSED)
        self.assertEqual(len(connector.urls), 1)
        self.assertEqual(self.delays, [])

    async def test_handler_errors_do_not_stop_the_channel(self) -> None:
        seen: List[Optional[int]] = []

        async def flaky(frame: InboundFrame) -> None:
            seen.append(1)
            if len(seen) == 1:
                raise RuntimeError("boom")

        connector = _Connector()
        channel = self._channel(connector, on_frame=flaky)
        channel.start()
        await asyncio.wait_for(connector.opened.wait(), timeout=2)
        sock = connector.sockets[0]
        with self.assertLogs("coachchat.client.channel", level="ERROR") as logs:
            await sock.queue.put('{"type": "chat_message"}')
            await sock.queue.put('{"type": "chat_message"}')
            for _ in range(20):
                if len(seen) == 2:
                    break
                await asyncio.sleep(0)

        self.assertTrue(any("Frame handler failed" in line for line in logs.output))
        self.assertEqual(len(seen), 2)
        self.assertEqual(channel.status, ConnectionStatus.OPEN)
        await channel.close()

    async def test_status_listener_errors_do_not_stop_the_channel(self) -> None:
        def failing_listener(status: ConnectionStatus) -> None:
            self.statuses.append(status)
            if status == ConnectionStatus.OPEN:
                raise RuntimeError("ui went away")

        connector = _Connector()
        with self.assertLogs("coachchat.client.channel", level="ERROR") as logs:
            channel = self._channel(connector, on_status=failing_listener)
            channel.start()
            await asyncio.wait_for(connector.opened.wait(), timeout=2)
            for _ in range(5):
                await asyncio.sleep(0)

        self.assertTrue(any("Status listener failed" in line for line in logs.output))
        self.assertEqual(channel.status, ConnectionStatus.OPEN)
        assert channel._task is not None
        self.assertFalse(channel._task.done())

        await connector.sockets[0].queue.put('{"type": "chat_message"}')
        for _ in range(20):
            if self.frames:
                break
            await asyncio.sleep(0)
        self.assertEqual(len(self.frames), 1)
        await channel.close()

    async def test_unexpected_socket_error_goes_through_backoff(self) -> None:
        connector = _Connector()
        channel = self._channel(connector)
        channel.start()
        await asyncio.wait_for(connector.opened.wait(), timeout=2)

        connector.opened.clear()
        with self.assertLogs("coachchat.client.channel", level="ERROR"):
            await connector.sockets[0].queue.put(RuntimeError("decoder blew up"))
            await asyncio.wait_for(connector.opened.wait(), timeout=2)

        self.assertEqual(self.delays, [1])
        self.assertEqual(len(connector.urls), 2)
        self.assertIn(ConnectionStatus.BACKOFF, self.statuses)
        self.assertEqual(channel.status, ConnectionStatus.OPEN)
        await channel.close()

    async def test_invalid_inline_message_is_handled_as_a_bare_signal(self) -> None:
        connector = _Connector()
        channel = self._channel(connector)
        channel.start()
        await asyncio.wait_for(connector.opened.wait(), timeout=2)

        await connector.sockets[0].queue.put(
            json.dumps({"type": "chat_message", "message_data": {"id": "not-a-number"}})
        )
        for _ in range(20):
            if self.frames:
                break
            await asyncio.sleep(0)

        self.assertEqual(len(self.frames), 1)
        self.assertTrue(self.frames[0].is_chat_message)
        self.assertIsNone(self.frames[0].message_data)
        await channel.close()


if __name__ == "__main__":
    unittest.main()
