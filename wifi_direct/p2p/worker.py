"""
Command worker.

Owns the backend and the producing end of the event bus. Commands are taken
off the queue and run one at a time, in order; a listener task relays the
backend's daemon notifications onto the event bus at the same time.

The worker stops when the command queue is shut down and empty, or when
the listener reports that the daemon connection was lost. In the second
case every command still queued is failed with TransportError.
"""

import asyncio
import logging

from wifi_direct.backend.base import P2pBackend
from wifi_direct.errors import ChannelClosedError, P2pError, TransportError
from wifi_direct.p2p.channel import Command
from wifi_direct.p2p.events import EventBus

logger = logging.getLogger(__name__)


class CommandWorker:
    """Serializes commands onto the backend and publishes its events."""

    def __init__(self, backend: P2pBackend, queue: asyncio.Queue, events: EventBus) -> None:
        self._backend = backend
        self._queue = queue
        self._events = events
        self._task: asyncio.Task | None = None
        self._listener: asyncio.Task | None = None
        self._fatal: TransportError | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fatal_error(self) -> TransportError | None:
        """The connection failure that stopped the worker, if any."""
        return self._fatal

    def start(self) -> asyncio.Task:
        if self._task is not None:
            raise RuntimeError("command worker already started")
        self._task = asyncio.create_task(self._run(), name="wifi-p2p-worker")
        return self._task

    async def wait_closed(self) -> None:
        """Wait until the worker has exited."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _listen(self) -> None:
        async for event in self._backend.events():
            logger.debug(f"Daemon event: {event.kind}")
            self._events.publish(event)
        logger.info("Backend event stream ended")

    def _listener_error(self) -> TransportError | None:
        """Return the fatal error if the listener died, else None."""
        if self._listener is None or not self._listener.done() or self._listener.cancelled():
            return None
        error = self._listener.exception()
        if error is None:
            return None
        if isinstance(error, TransportError):
            return error
        return TransportError(f"event listener failed: {error}", error)

    async def _run(self) -> None:
        self._listener = asyncio.create_task(self._listen(), name="wifi-p2p-listener")
        logger.info("Command worker started")
        try:
            while True:
                get = asyncio.ensure_future(self._queue.get())
                watch = {get} if self._listener.done() else {get, self._listener}
                try:
                    await asyncio.wait(watch, return_when=asyncio.FIRST_COMPLETED)
                except asyncio.CancelledError:
                    get.cancel()
                    raise

                if get.done():
                    try:
                        command = get.result()
                    except asyncio.QueueShutDown:
                        logger.info("Command queue closed and drained")
                        break
                    await self._execute(command)
                else:
                    get.cancel()

                self._fatal = self._listener_error()
                if self._fatal is not None:
                    logger.error(f"Daemon connection lost, stopping worker: {self._fatal}")
                    self._fail_queued(lambda: TransportError(str(self._fatal), self._fatal.cause))
                    break
        finally:
            # Anything left here means we were cancelled
            self._fail_queued(lambda: ChannelClosedError("worker"))
            await self._shutdown()

    async def _execute(self, command: Command) -> None:
        call = asyncio.ensure_future(command.apply(self._backend))
        watch = {call} if self._listener.done() else {call, self._listener}
        try:
            await asyncio.wait(watch, return_when=asyncio.FIRST_COMPLETED)
            if not call.done():
                error = self._listener_error()
                if error is not None:
                    call.cancel()
                    command.resolve(TransportError(str(error), error.cause))
                    logger.warning(f"{command.name} aborted: connection lost")
                    return
                # Listener ended cleanly; the call is still valid
                await asyncio.wait({call})
        except asyncio.CancelledError:
            call.cancel()
            command.resolve(ChannelClosedError("worker"))
            raise

        error = call.exception()
        if error is None:
            logger.debug(f"{command.name} acknowledged")
        elif isinstance(error, P2pError):
            logger.warning(f"{command.name} failed: {error}")
        else:
            logger.error(f"{command.name} raised unexpectedly: {error!r}", exc_info=error)
        command.resolve(error)

    def _fail_queued(self, make_error) -> None:
        """Shut the queue and fail every command still on it."""
        self._queue.shutdown()
        while True:
            try:
                command = self._queue.get_nowait()
            except (asyncio.QueueEmpty, asyncio.QueueShutDown):
                return
            command.resolve(make_error())

    async def _shutdown(self) -> None:
        if self._listener is not None and not self._listener.done():
            self._listener.cancel()
        if self._listener is not None:
            await asyncio.gather(self._listener, return_exceptions=True)
        try:
            await self._backend.close()
        except P2pError as e:
            logger.warning(f"Backend close failed: {e}")
        self._events.close()
        logger.info("Command worker stopped")
