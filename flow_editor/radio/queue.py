"""
FlowDeck Broadcast Queue

Runs radio transmissions one at a time. A transmission selects the
channel, waits for the channel to be clear, keys PTT, plays the audio the
requested number of times and always releases PTT. Queued transmissions
can be cancelled by their source key.
"""

import asyncio
import inspect
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Iterable, List, Optional, Union

from flow_editor.exceptions import ClearChannelTimeout
from flow_editor.radio.broadcast import BroadcastRequest
from flow_editor.radio.channel import ChannelBits, ChannelEncoder


CLEAR_CHANNEL_POLL_MS = 100


class RadioDriver:
    """Hardware seam used by the queue. Subclasses talk to a real or simulated radio."""

    async def set_channel(self, bits: ChannelBits):
        raise NotImplementedError

    async def set_ptt(self, active: bool):
        raise NotImplementedError

    async def is_channel_clear(self) -> bool:
        raise NotImplementedError

    async def play(self, request: BroadcastRequest):
        raise NotImplementedError


async def wait_for_clear_channel(
    is_clear: Callable[[], Union[bool, Awaitable[bool]]],
    timeout_ms: int,
    interval_ms: int = CLEAR_CHANNEL_POLL_MS,
):
    """
    Poll until the channel is clear.

    Raises:
        ClearChannelTimeout: the channel stayed busy for timeout_ms
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000.0
    while True:
        clear = is_clear()
        if inspect.isawaitable(clear):
            clear = await clear
        if clear:
            return
        if loop.time() >= deadline:
            raise ClearChannelTimeout(timeout_ms)
        await asyncio.sleep(interval_ms / 1000.0)


async def transmit(
    driver: RadioDriver,
    request: BroadcastRequest,
    cancelled: Callable[[], bool] = lambda: False,
    clear_poll_ms: int = CLEAR_CHANNEL_POLL_MS,
) -> bool:
    """
    Perform one keyed transmission.

    Returns False if the transmission was cancelled between repeats.
    """
    await driver.set_channel(ChannelEncoder.encode(request.channel))
    await asyncio.sleep(request.channel_settle_ms / 1000.0)

    if request.wait_for_clear:
        await wait_for_clear_channel(driver.is_channel_clear, request.clear_channel_timeout_ms, clear_poll_ms)

    completed = True
    try:
        await driver.set_ptt(True)
        await asyncio.sleep(request.pre_key_delay_ms / 1000.0)
        for index in range(request.repeat):
            if cancelled():
                completed = False
                break
            if request.audio_ref:
                await driver.play(request)
            elif request.key_duration_ms:
                await asyncio.sleep(request.key_duration_ms / 1000.0)
            if index < request.repeat - 1:
                await asyncio.sleep(request.repeat_delay_ms / 1000.0)
        await asyncio.sleep(request.post_key_delay_ms / 1000.0)
    finally:
        await driver.set_ptt(False)
    return completed


@dataclass
class BroadcastJob:
    """One queued trigger of a broadcast node: one or more requests run back to back."""
    id: int
    requests: List[BroadcastRequest]
    source_key: Optional[str]
    future: asyncio.Future
    cancelled: bool = False
    completed: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source_key,
            "channels": [r.channel for r in self.requests],
            "cancelled": self.cancelled,
        }


class BroadcastQueue:
    """Serializes transmissions across all flows."""

    def __init__(self, driver: RadioDriver, clear_poll_ms: int = CLEAR_CHANNEL_POLL_MS, logger=None):
        self.driver = driver
        self.clear_poll_ms = clear_poll_ms
        self.logger = logger or logging.getLogger(__name__)
        self.active: Optional[BroadcastJob] = None
        self._pending: Deque[BroadcastJob] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    @property
    def queue_length(self) -> int:
        return len(self._pending)

    def pending(self) -> List[BroadcastJob]:
        return list(self._pending)

    def submit(self, requests: Union[BroadcastRequest, Iterable[BroadcastRequest]]) -> BroadcastJob:
        """Queue a job and return immediately. The job's future resolves when it finishes."""
        if isinstance(requests, BroadcastRequest):
            requests = [requests]
        requests = list(requests)
        if not requests:
            raise ValueError("A broadcast job needs at least one request")

        loop = asyncio.get_running_loop()
        job = BroadcastJob(
            id=next(self._ids),
            requests=requests,
            source_key=requests[0].cancel_source_key,
            future=loop.create_future(),
        )
        self._pending.append(job)
        self.log('info', f"Queued broadcast job {job.id} ({len(self._pending)} waiting)")

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process())
        return job

    async def enqueue(self, requests: Union[BroadcastRequest, Iterable[BroadcastRequest]]) -> Any:
        """Queue a job and wait for it. Returns False if it was cancelled."""
        job = self.submit(requests)
        return await job.future

    def cancel_by_source(self, source_key: str) -> int:
        """
        Cancel every job from a source.

        Queued jobs are dropped; the active job stops before its next
        repeat or channel. Returns the number of jobs affected.
        """
        if not source_key:
            return 0

        count = 0
        kept: Deque[BroadcastJob] = deque()
        for job in self._pending:
            if job.source_key == source_key:
                job.cancelled = True
                if not job.future.done():
                    job.future.set_result(False)
                count += 1
            else:
                kept.append(job)
        self._pending = kept

        if self.active is not None and self.active.source_key == source_key and not self.active.cancelled:
            self.active.cancelled = True
            count += 1

        if count:
            self.log('info', f"Cancelled {count} broadcast job(s) from {source_key}")
        return count

    async def _process(self):
        while self._pending:
            job = self._pending.popleft()
            self.active = job
            self.log('info', f"Processing broadcast job {job.id} ({len(self._pending)} remaining)")
            try:
                finished = await self._run(job)
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.cancel()
                raise
            except Exception as e:
                self.log('error', f"Broadcast job {job.id} failed: {e}")
                if not job.future.done():
                    job.future.set_exception(e)
            else:
                if not job.future.done():
                    job.future.set_result(finished)
            finally:
                self.active = None

    async def _run(self, job: BroadcastJob) -> bool:
        for index, request in enumerate(job.requests):
            if job.cancelled:
                return False
            done = await transmit(self.driver, request, lambda: job.cancelled, self.clear_poll_ms)
            if not done:
                return False
            job.completed.append(request.channel)
            if index < len(job.requests) - 1:
                await asyncio.sleep(request.repeat_delay_ms / 1000.0)
        return not job.cancelled

    async def stop(self):
        """Drop queued jobs and stop the worker."""
        for job in self._pending:
            job.cancelled = True
            if not job.future.done():
                job.future.set_result(False)
        self._pending.clear()

        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None


__all__ = [
    'RadioDriver',
    'BroadcastJob',
    'BroadcastQueue',
    'wait_for_clear_channel',
    'transmit',
    'CLEAR_CHANNEL_POLL_MS',
]
