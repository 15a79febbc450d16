"""
Shared test doubles for the hub tests
"""
import asyncio

from evidentia.exceptions import LogStoreError


class RecordingFanout:
    """Fan-out that records deliveries per recipient instead of sending"""

    def __init__(self, connection_ids=()):
        self.connection_ids = list(connection_ids)
        self.broadcasts = []   # (mode, excluded, event_type, data)
        self.delivered = {cid: [] for cid in self.connection_ids}

    def _deliver(self, recipients, event_type, data):
        for cid in recipients:
            self.delivered.setdefault(cid, []).append((event_type, data))
        return len(recipients)

    def send_all(self, event_type, data):
        self.broadcasts.append(('all', None, event_type, data))
        return self._deliver(self.connection_ids, event_type, data)

    def send_all_except(self, connection_id, event_type, data):
        self.broadcasts.append(('all_except', connection_id, event_type, data))
        recipients = [cid for cid in self.connection_ids if cid != connection_id]
        return self._deliver(recipients, event_type, data)

    def send_to(self, connection_id, event_type, data):
        self.broadcasts.append(('to', connection_id, event_type, data))
        return bool(self._deliver([connection_id], event_type, data))


class MemoryLogStore:
    """Radio log store that keeps records in a list, optionally failing every write"""

    def __init__(self, fail=False, delay=0.0):
        self.records = []
        self.fail = fail
        self.delay = delay

    async def insert(self, record):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise LogStoreError('HTTP 500 from radio_logs: boom', status_code=500)
        self.records.append(record)


class FakeWebSocket:
    """Minimal stand-in for a Starlette WebSocket on the send side"""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError('connection reset')
        self.sent.append(text)

