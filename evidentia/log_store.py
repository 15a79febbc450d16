"""
Durable radio log

The hub appends one record per radio transmission to an external,
append-only table and never reads it back. Writes are fire-and-forget:
LogWriter.submit() schedules a detached task and returns immediately, and the
only observer of the outcome is a done-callback that logs it. A rejected
write means the transmission was heard but is missing from history; that is
accepted.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol, Set

import aiohttp

from .constants import DEFAULT_LOG_TABLE, DEFAULT_LOG_TIMEOUT
from .exceptions import LogStoreError

LOGGER = logging.getLogger(__name__)


class LogStore(Protocol):
    """Append-only insert of one radio log record"""

    async def insert(self, record: Dict[str, Any]) -> None:
        ...


class NullLogStore:
    """Used when no store is configured; records are dropped"""

    async def insert(self, record: Dict[str, Any]) -> None:
        LOGGER.debug(f'Radio log disabled, dropping record from {record.get("sender")}')


class SupabaseLogStore:
    """
    Inserts records into a Supabase (PostgREST) table over HTTP.

    The aiohttp session is owned by the caller so it can be shared and
    closed on shutdown.
    """

    def __init__(self, url: str, key: str, http_session: aiohttp.ClientSession,
                 table: str = DEFAULT_LOG_TABLE, timeout: float = DEFAULT_LOG_TIMEOUT):
        self.endpoint = f'{url.rstrip("/")}/rest/v1/{table}'
        self.table = table
        self._key = key
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            'apikey': self._key,
            'Authorization': f'Bearer {self._key}',
            'Content-Type': 'application/json',
            'Prefer': 'return=minimal'
        }

    async def insert(self, record: Dict[str, Any]) -> None:
        body = json.dumps(record, separators=(',', ':'))
        LOGGER.debug(f'POST {self.endpoint} ({len(body)} bytes)')
        try:
            async with self._http.post(self.endpoint, data=body, headers=self._headers(),
                                       timeout=self._timeout) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise LogStoreError(f'HTTP {resp.status} from {self.table}: {text[:200]}',
                                        status_code=resp.status)
        except LogStoreError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LogStoreError(f'Insert into {self.table} failed: {e}') from e


class LogWriter:
    """
    Detached, fire-and-forget writer in front of a LogStore.

    Outstanding writes are unbounded by default. Setting max_pending > 0
    makes excess writes wait for a slot; they are still never awaited by the
    caller.
    """

    def __init__(self, store: LogStore, max_pending: int = 0):
        self.store = store
        self._tasks: Set[asyncio.Task] = set()
        self._slots: Optional[asyncio.Semaphore] = asyncio.Semaphore(max_pending) if max_pending > 0 else None
        self.stats = {
            'submitted': 0,
            'written': 0,
            'failed': 0
        }

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, record: Dict[str, Any]) -> asyncio.Task:
        """
        Schedule a write and return immediately.

        Raises:
            RuntimeError: If no event loop is running (checked before the write is built)
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._write(record))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        self.stats['submitted'] += 1
        return task

    async def _write(self, record: Dict[str, Any]) -> None:
        if self._slots is None:
            await self.store.insert(record)
            return
        async with self._slots:
            await self.store.insert(record)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.stats['failed'] += 1
            LOGGER.warning('Radio log write cancelled')
            return
        exc = task.exception()
        if exc is not None:
            self.stats['failed'] += 1
            LOGGER.warning(f'Radio log write failed: {exc}')
        else:
            self.stats['written'] += 1

    async def drain(self, timeout: float = 5.0) -> int:
        """
        Wait for outstanding writes (shutdown only).

        Returns:
            Number of writes still pending when the timeout expired
        """
        if not self._tasks:
            return 0
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            LOGGER.warning(f'{len(pending)} radio log writes still pending at shutdown, cancelling')
            for task in pending:
                task.cancel()
        return len(pending)
