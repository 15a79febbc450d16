"""
Tests for hub session lifecycle and inbound frame dispatch
"""
import asyncio
import json
import unittest

from evidentia.hub import Hub
from evidentia.log_store import LogWriter

from conftest import FakeWebSocket, MemoryLogStore


def envelope(event_type, data):
    return json.dumps({'type': event_type, 'data': data})


class HubTestCase(unittest.TestCase):
    """Runs each test body inside a fresh event loop with a fresh hub"""

    def setUp(self):
        self.store = MemoryLogStore()
        self.writer = LogWriter(self.store)
        self.hub = Hub(log_writer=self.writer)
        self.loop = asyncio.new_event_loop()

    def tearDown(self):
        self.hub.shutdown()
        self.run_async(self.settle())
        self.loop.close()

    def run_async(self, coro):
        return self.loop.run_until_complete(coro)

    async def settle(self):
        for _ in range(10):
            await asyncio.sleep(0)
        await self.writer.drain(timeout=1.0)

    def connect(self, count):
        sockets = [FakeWebSocket() for _ in range(count)]
        sessions = [self.hub.connect(ws) for ws in sockets]
        for session in sessions:
            session.start()
        return sockets, [s.connection_id for s in sessions]

    @staticmethod
    def messages(ws, event_type=None):
        decoded = [json.loads(text) for text in ws.sent if text != 'pong']
        if event_type is None:
            return decoded
        return [m for m in decoded if m['type'] == event_type]


class TestHubLifecycle(HubTestCase):

    def test_connect_sends_snapshot_to_new_session_only(self):
        async def scenario():
            sockets, ids = self.connect(1)
            self.hub.handle_event(ids[0], 'login', {'name': 'Unit1'})
            late_ws = FakeWebSocket()
            self.hub.connect(late_ws).start()
            await self.settle()
            return sockets, late_ws

        sockets, late_ws = self.run_async(scenario())
        # Initial (empty) snapshot + login broadcast; nothing from the late connect
        self.assertEqual(len(self.messages(sockets[0], 'units_update')), 2)
        late = self.messages(late_ws)
        self.assertEqual(len(late), 1)
        self.assertEqual([u['name'] for u in late[0]['data']['units']], ['Unit1'])
        self.assertEqual(len(self.hub.registry), 1)

    def test_connect_creates_no_registry_entry(self):
        async def scenario():
            self.connect(3)
            await self.settle()

        self.run_async(scenario())
        self.assertEqual(len(self.hub.registry), 0)
        self.assertEqual(len(self.hub.sessions), 3)

    def test_disconnect_removes_entry_and_broadcasts_once(self):
        async def scenario():
            sockets, ids = self.connect(2)
            self.hub.handle_event(ids[0], 'login', {'name': 'Unit1'})
            self.hub.handle_event(ids[1], 'login', {'name': 'Unit2'})
            first = self.hub.disconnect(ids[0])
            second = self.hub.disconnect(ids[0])
            await self.settle()
            return sockets, first, second

        sockets, first, second = self.run_async(scenario())
        self.assertTrue(first)
        self.assertFalse(second)
        snapshots = self.messages(sockets[1], 'units_update')
        # initial + 2 logins + exactly one disconnect
        self.assertEqual(len(snapshots), 4)
        self.assertEqual([u['name'] for u in snapshots[-1]['data']['units']], ['Unit2'])

    def test_disconnect_without_login_still_cleans_session(self):
        async def scenario():
            _, ids = self.connect(1)
            self.assertTrue(self.hub.disconnect(ids[0]))
            await self.settle()

        self.run_async(scenario())
        self.assertEqual(len(self.hub.sessions), 0)

    def test_reconnect_gets_new_identity(self):
        """A unit that reconnects must log in again under a new id"""
        async def scenario():
            _, ids = self.connect(1)
            self.hub.handle_event(ids[0], 'login', {'name': 'Unit1'})
            self.hub.disconnect(ids[0])
            _, new_ids = self.connect(1)
            self.hub.handle_event(new_ids[0], 'location_update', {'lat': 1, 'lng': 2})
            await self.settle()
            return ids[0], new_ids[0]

        old_id, new_id = self.run_async(scenario())
        self.assertNotEqual(old_id, new_id)
        self.assertEqual(len(self.hub.registry), 0)

    def test_shutdown_closes_every_session(self):
        async def scenario():
            _, ids = self.connect(3)
            for cid in ids:
                self.hub.handle_event(cid, 'login', {'name': cid})
            self.hub.shutdown()
            await self.settle()

        self.run_async(scenario())
        self.assertEqual(len(self.hub.sessions), 0)
        self.assertEqual(len(self.hub.registry), 0)


class TestHubDispatch(HubTestCase):

    def test_frames_route_to_presence_and_relay(self):
        async def scenario():
            sockets, ids = self.connect(3)
            self.hub.handle_frame(ids[0], envelope('login', {'name': 'Unit1', 'status': 'patrol'}))
            self.hub.handle_frame(ids[0], envelope('location_update', {'lat': 1, 'lng': 2}))
            self.hub.handle_frame(ids[0], envelope('radio_voice', {'sender': 'Unit1', 'audio': 'QUJD'}))
            self.hub.handle_frame(ids[0], envelope('radio_text', {'sender': 'Unit1', 'text': '10-4'}))
            await self.settle()
            return sockets

        a, b, c = self.run_async(scenario())
        self.assertEqual(self.messages(b, 'units_update')[-1]['data']['units'], [{
            'connection_id': self.hub.registry.snapshot_all()[0]['connection_id'],
            'name': 'Unit1', 'status': 'patrol', 'lat': 1, 'lng': 2
        }])
        self.assertEqual(len(self.messages(a, 'radio_voice')), 0)
        self.assertEqual(len(self.messages(b, 'radio_voice')), 1)
        self.assertEqual(len(self.messages(c, 'radio_voice')), 1)
        for ws in (a, b, c):
            self.assertEqual(self.messages(ws, 'radio_text')[0]['data']['text'], '10-4')
        self.assertEqual([r['is_voice'] for r in self.store.records], [True, False])

    def test_ping_answered_to_sender_only(self):
        async def scenario():
            sockets, ids = self.connect(2)
            self.hub.handle_frame(ids[0], 'ping')
            await self.settle()
            return sockets

        a, b = self.run_async(scenario())
        self.assertIn('pong', a.sent)
        self.assertNotIn('pong', b.sent)

    def test_bad_frames_are_dropped(self):
        async def scenario():
            sockets, ids = self.connect(1)
            self.hub.handle_frame(ids[0], '{not json')
            self.hub.handle_frame(ids[0], json.dumps(['login']))
            self.hub.handle_frame(ids[0], json.dumps({'data': {}}))
            self.hub.handle_frame(ids[0], envelope('self_destruct', {}))
            await self.settle()
            return sockets

        sockets = self.run_async(scenario())
        self.assertEqual(self.hub.stats['frames_rejected'], 4)
        # Only the initial snapshot was sent
        self.assertEqual(len(self.messages(sockets[0])), 1)
        self.assertIn(self.hub.sessions.connection_ids()[0], self.hub.sessions)

    def test_nan_coordinates_rejected(self):
        """NaN/Infinity never reach the registry, so snapshots stay parseable by browsers"""
        async def scenario():
            sockets, ids = self.connect(2)
            self.hub.handle_frame(ids[0], envelope('login', {'name': 'Unit1', 'lat': 1, 'lng': 2}))
            self.hub.handle_frame(ids[0], '{"type":"location_update","data":{"lat":NaN,"lng":Infinity}}')
            self.hub.handle_frame(ids[0], '{"type":"location_update","data":{"lat":-Infinity}}')
            await self.settle()
            return sockets

        a, b = self.run_async(scenario())
        self.assertEqual(self.hub.stats['frames_rejected'], 2)
        unit = self.hub.registry.snapshot_all()[0]
        self.assertEqual((unit['lat'], unit['lng']), (1, 2))
        for text in b.sent:
            self.assertNotIn('NaN', text)
            self.assertNotIn('Infinity', text)
        # initial + login only
        self.assertEqual(len(self.messages(b, 'units_update')), 2)

    def test_events_from_closed_session_ignored(self):
        async def scenario():
            _, ids = self.connect(1)
            self.hub.disconnect(ids[0])
            self.hub.handle_event(ids[0], 'login', {'name': 'Ghost'})
            await self.settle()

        self.run_async(scenario())
        self.assertEqual(len(self.hub.registry), 0)

    def test_stats(self):
        async def scenario():
            _, ids = self.connect(2)
            self.hub.handle_event(ids[0], 'login', {'name': 'Unit1'})
            self.hub.handle_event(ids[0], 'radio_text', {'text': 'hi'})
            await self.settle()

        self.run_async(scenario())
        stats = self.hub.get_stats()
        self.assertEqual(stats['sessions_connected'], 2)
        self.assertEqual(stats['units_active'], 1)
        self.assertEqual(stats['text_relayed'], 1)
        self.assertEqual(stats['log_writes_written'], 1)
        self.assertEqual(stats['log_writes_pending'], 0)
        self.assertEqual(len(stats['sessions']), 2)
        for entry in stats['sessions']:
            self.assertGreater(entry['connected_at'], 0)
            self.assertEqual(entry['messages_dropped'], 0)


if __name__ == '__main__':
    unittest.main()
