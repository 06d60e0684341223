"""Firmware upgrade orchestration over a device transport."""

import asyncio
from collections import deque
from concurrent.futures import Future
from datetime import datetime
import logging
from typing import Callable, Iterable, Optional, Union

from pydantic import BaseModel, Field

from mcu_updater.errors import (
    AlreadyRunningError,
    DeviceRejectedError,
    EmptyImageSetError,
    InvalidImageError,
    TransportError,
    UpgradeError,
    UpgradeTimeoutError,
)
from mcu_updater.models.commands import DeviceCommand, DeviceOperation, DeviceResponse
from mcu_updater.models.config import UpgradeConfiguration
from mcu_updater.models.image import FirmwareImage
from mcu_updater.models.status import UpgradeMode, UpgradeState, is_valid_transition
from mcu_updater.services.device import send_command
from mcu_updater.services.events import CompositeObserver, UpgradeObserver
from mcu_updater.services.transport import Transport
from mcu_updater.utils.logging import TrafficLogSink
from mcu_updater.utils.verification import compute_digest


class UpgradeRun(BaseModel):
    """In-memory state of the active upgrade run."""

    images: tuple[FirmwareImage, ...] = Field(..., min_length=1)
    mode: UpgradeMode
    state: UpgradeState = UpgradeState.IDLE
    bytes_sent: int = Field(0, ge=0, description="Bytes acknowledged for the current image")
    total_bytes: int = Field(..., gt=0)
    estimated_swap_time: float = Field(..., ge=0)
    digests: list[bytes] = Field(default_factory=list)
    skipped: set[int] = Field(
        default_factory=set, description="Indexes of images already present on the device"
    )


class _CancelRequested(Exception):
    """Raised at a safe boundary once cancel() has been requested."""


class FirmwareUpgradeManager:
    """Drives one device through validate → upload → test → confirm → reset.

    Only one run may be active at a time. Control methods (start, pause,
    resume, cancel) are non-blocking and may be called from any thread;
    observer events are delivered in order on the manager's event loop.
    """

    def __init__(
        self,
        transport: Transport,
        configuration: Optional[UpgradeConfiguration] = None,
        observer: Optional[UpgradeObserver] = None,
        log_sink: Optional[TrafficLogSink] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize upgrade manager.

        Args:
            transport: Transport exclusively owned by this manager during a run
            configuration: Run parameters (defaults if None)
            observer: Event receiver (no-op if None)
            log_sink: Optional sink for transport traffic
            loop: Event loop runs execute on (the loop of the first
                start() call if None)
        """
        self.logger = logging.getLogger("mcu_updater.orchestrator")
        self.transport = transport
        self.configuration = configuration or UpgradeConfiguration()
        self.observer = observer or UpgradeObserver()
        self.log_sink = log_sink

        self._state = UpgradeState.IDLE
        self._run: Optional[UpgradeRun] = None
        self._task: Optional[asyncio.Task] = None
        self._loop = loop
        self._events: deque = deque()
        self._emitting = False
        self._paused = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._cancel_event = asyncio.Event()

    @property
    def state(self) -> UpgradeState:
        return self._state

    @property
    def run(self) -> Optional[UpgradeRun]:
        return self._run

    @property
    def is_running(self) -> bool:
        return self._run is not None

    @property
    def is_paused(self) -> bool:
        return self._paused

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(
        self,
        images: Iterable[FirmwareImage],
        mode: UpgradeMode = UpgradeMode.TEST_AND_CONFIRM,
    ) -> Union[asyncio.Task, Future]:
        """Start an upgrade run in the background.

        Returns immediately. On the manager's loop the result is the
        asyncio.Task executing the run; from any other thread the run is
        handed over to that loop and a concurrent.futures.Future of it is
        returned.

        Args:
            images: Images to upload, in transmission order (not modified)
            mode: Upgrade mode for this run

        Returns:
            Task (or thread-safe Future) completing when the run ends

        Raises:
            AlreadyRunningError: If a run is active
            EmptyImageSetError: If ``images`` is empty
            RuntimeError: If no event loop is running or bound
        """
        images = tuple(images)
        self._check_can_start(images)
        mode = UpgradeMode(mode)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        loop = self._loop
        if loop is None or loop.is_closed():
            if running is None:
                raise RuntimeError("No event loop to run the upgrade on")
            loop = self._loop = running

        if running is loop:
            return self._begin(images, mode)
        self.logger.debug("start() called off the event loop, handing over")
        return asyncio.run_coroutine_threadsafe(self._begin_and_wait(images, mode), loop)

    def _check_can_start(self, images: tuple) -> None:
        if self._run is not None:
            raise AlreadyRunningError(self._state.value)
        if not images:
            raise EmptyImageSetError()

    async def _begin_and_wait(self, images: tuple, mode: UpgradeMode) -> None:
        await self._begin(images, mode)

    def _begin(self, images: tuple, mode: UpgradeMode) -> asyncio.Task:
        # Checked again on the loop: another start may have won the race
        self._check_can_start(images)

        self._paused = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._cancel_event = asyncio.Event()
        self._run = UpgradeRun(
            images=images,
            mode=mode,
            total_bytes=sum(img.size for img in images),
            estimated_swap_time=self.configuration.estimated_swap_time,
        )

        self.logger.info(
            f"Starting upgrade: mode={mode.value}, images={len(images)}, "
            f"total={self._run.total_bytes} bytes"
        )
        self._emit("on_start")
        self._transition(UpgradeState.VALIDATE)
        self._task = self._loop.create_task(self._execute(self._run))
        return self._task

    def pause(self) -> None:
        """Pause the upload before its next chunk. No-op outside upload."""
        self._call_in_loop(self._do_pause)

    def resume(self) -> None:
        """Resume a paused upload. No-op if not paused."""
        self._call_in_loop(self._do_resume)

    def cancel(self) -> None:
        """Cancel the active run at the next safe boundary. Idempotent."""
        self._call_in_loop(self._do_cancel)

    def _call_in_loop(self, fn: Callable[[], None]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            fn()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            fn()
        else:
            loop.call_soon_threadsafe(fn)

    def _do_pause(self) -> None:
        if self._run is None or self._state is not UpgradeState.UPLOAD:
            self.logger.debug(f"Pause ignored in state {self._state.value}")
            return
        if self._paused or self._cancel_event.is_set():
            return
        self._paused = True
        self._resume_event.clear()
        self.logger.info("Pause requested")

    def _do_resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        self._resume_event.set()
        self.logger.info("Resume requested")

    def _do_cancel(self) -> None:
        if self._run is None or self._cancel_event.is_set():
            return
        self.logger.info(f"Cancel requested in state {self._state.value}")
        self._cancel_event.set()
        # Wake a paused upload so it can observe the cancellation
        self._paused = False
        self._resume_event.set()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _execute(self, run: UpgradeRun) -> None:
        try:
            await self._validate(run)

            await self._enter(UpgradeState.UPLOAD)
            await self._upload(run)

            if run.mode is UpgradeMode.CONFIRM_ONLY:
                await self._enter(UpgradeState.CONFIRM)
                await self._confirm(run)
            else:
                await self._enter(UpgradeState.TEST)
                await self._test(run)
                if run.mode is UpgradeMode.TEST_AND_CONFIRM:
                    await self._enter(UpgradeState.CONFIRM)
                    await self._confirm(run)

            await self._enter(UpgradeState.RESET)
            await self._reset()
            self._check_cancelled()

            self._finish(UpgradeState.SUCCESS)

        except _CancelRequested:
            self._finish(UpgradeState.CANCELLED)
        except asyncio.CancelledError:
            self.logger.warning(f"Upgrade task cancelled in state {self._state.value}")
            self._finish(UpgradeState.CANCELLED)
            raise
        except UpgradeError as e:
            self.logger.error(f"Upgrade failed in {self._state.value}: {e}", exc_info=True)
            self._finish(UpgradeState.FAILED, e)
        except Exception as e:
            self.logger.error(
                f"Unexpected error in {self._state.value}: {e}", exc_info=True
            )
            error = TransportError(f"unexpected error: {e}")
            error.__cause__ = e
            self._finish(UpgradeState.FAILED, error)

    async def _validate(self, run: UpgradeRun) -> None:
        """Re-check every image, then ask the device what it already holds."""
        for index, image in enumerate(run.images):
            try:
                digest = compute_digest(image.content)
            except ValueError as e:
                raise InvalidImageError(index, str(e)) from e
            if image.digest is not None and image.digest != digest:
                raise InvalidImageError(index, "digest does not match content")
            run.digests.append(digest)
        self.logger.info(f"All {len(run.images)} image(s) valid")

        self._check_cancelled()
        response = await self._request(DeviceCommand(op=DeviceOperation.LIST))
        on_device = {slot.hash.lower() for slot in response.images}
        for index, digest in enumerate(run.digests):
            if digest.hex() in on_device:
                run.skipped.add(index)
        for slot in response.images:
            self.logger.debug(
                f"Device slot image={slot.image} slot={slot.slot} hash={slot.hash[:12]} "
                f"active={slot.active} confirmed={slot.confirmed} pending={slot.pending}"
            )

    async def _upload(self, run: UpgradeRun) -> None:
        chunk_size = self.configuration.chunk_size
        for index, image in enumerate(run.images):
            await self._wait_if_paused()
            self._check_cancelled()

            if index in run.skipped:
                self.logger.info(
                    f"Image {image.image} ({image.core.value}) already on device, skipping upload"
                )
                continue

            digest_hex = run.digests[index].hex()
            size = image.size
            offset = 0
            run.bytes_sent = 0
            self.logger.info(f"Uploading image {image.image} ({image.core.value}): {size} bytes")
            self._emit("on_progress", 0, size, datetime.now())

            while offset < size:
                await self._wait_if_paused()
                self._check_cancelled()

                chunk = image.content[offset : offset + chunk_size]
                first = offset == 0
                response = await self._request(
                    DeviceCommand(
                        op=DeviceOperation.UPLOAD,
                        image=image.image,
                        offset=offset,
                        length=size if first else None,
                        digest=digest_hex if first else None,
                        data=chunk,
                    )
                )

                next_offset = (
                    response.offset if response.offset is not None else offset + len(chunk)
                )
                if next_offset <= offset or next_offset > size:
                    raise DeviceRejectedError(
                        f"bad upload ack: offset {next_offset} after chunk at {offset} "
                        f"(image size {size})"
                    )
                offset = next_offset
                run.bytes_sent = offset
                self._emit("on_progress", offset, size, datetime.now())

            self.logger.info(f"Image {image.image} uploaded")

        await self._wait_if_paused()

    async def _test(self, run: UpgradeRun) -> None:
        for index, image in enumerate(run.images):
            self._check_cancelled()
            await self._request(
                DeviceCommand(
                    op=DeviceOperation.TEST,
                    image=image.image,
                    digest=run.digests[index].hex(),
                )
            )
            self.logger.info(f"Image {image.image} marked for test boot")

    async def _confirm(self, run: UpgradeRun) -> None:
        for index, image in enumerate(run.images):
            self._check_cancelled()
            await self._request(
                DeviceCommand(
                    op=DeviceOperation.CONFIRM,
                    image=image.image,
                    digest=run.digests[index].hex(),
                )
            )
            self.logger.info(f"Image {image.image} confirmed")

    async def _reset(self) -> None:
        if self.configuration.erase_app_settings:
            await self._request(DeviceCommand(op=DeviceOperation.ERASE_SETTINGS))
            self.logger.info("Application settings erased")
            self._check_cancelled()

        await self._request(DeviceCommand(op=DeviceOperation.RESET))
        timeout = self.configuration.reset_timeout
        self.logger.info(f"Reset sent, waiting up to {timeout:.1f}s for device")

        reconnect = asyncio.ensure_future(self.transport.wait_for_reconnect())
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, pending = await asyncio.wait(
                {reconnect, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (reconnect, cancelled):
                if not task.done():
                    task.cancel()
            await asyncio.gather(reconnect, cancelled, return_exceptions=True)

        if cancelled in done:
            raise _CancelRequested()
        if reconnect in done:
            try:
                reconnect.result()
            except UpgradeError:
                raise
            except OSError as e:
                raise TransportError(f"reconnect failed: {e}") from e
            self.logger.info("Device back online")
            return
        raise UpgradeTimeoutError(
            f"device did not come back within {timeout:.1f}s after reset"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _request(self, command: DeviceCommand) -> DeviceResponse:
        return await send_command(
            self.transport, command, self.configuration.response_timeout, self.log_sink
        )

    async def _wait_if_paused(self) -> None:
        if self._resume_event.is_set():
            return
        self.logger.info("Upload paused")
        await self._resume_event.wait()
        self.logger.info("Upload resumed")

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise _CancelRequested()

    async def _enter(self, state: UpgradeState) -> None:
        """Phase boundary: honour pause and cancel, then transition."""
        await self._wait_if_paused()
        self._check_cancelled()
        self._transition(state)

    def _transition(self, new: UpgradeState) -> None:
        previous = self._state
        if not is_valid_transition(previous, new):
            raise RuntimeError(f"Invalid transition {previous.value} -> {new.value}")
        self._state = new
        if self._run is not None:
            self._run.state = new
        self.logger.info(f"State: {previous.value} -> {new.value}")
        self._emit("on_state_change", previous, new)

    def _finish(self, terminal: UpgradeState, error: Optional[Exception] = None) -> None:
        if self._run is None:
            return
        last_state = self._state
        self._transition(terminal)

        # Back to idle before the terminal event so an observer may start again;
        # events of the new run queue behind it in _emit
        self._run = None
        self._task = None
        self._state = UpgradeState.IDLE
        self._paused = False
        self._resume_event.set()

        if terminal is UpgradeState.SUCCESS:
            self.logger.info("Upgrade complete")
            self._emit("on_complete")
        elif terminal is UpgradeState.FAILED:
            self._emit("on_fail", last_state, error)
        else:
            self.logger.info(f"Upgrade cancelled in state {last_state.value}")
            self._emit("on_cancel", last_state)

    def _emit(self, event: str, *args) -> None:
        """Deliver an event to the observer.

        Events raised from inside an observer callback (e.g. a start() in
        on_complete) are queued and delivered once the current event has
        reached every observer.
        """
        self._events.append((event, args))
        if self._emitting:
            return
        self._emitting = True
        try:
            while self._events:
                name, event_args = self._events.popleft()
                try:
                    getattr(self.observer, name)(*event_args)
                except Exception as e:
                    self.logger.error(f"Observer {name} failed: {e}", exc_info=True)
        finally:
            self._emitting = False


class UpgradeManagerBuilder:
    """Holds upgrade settings until a transport is available.

    Only ``connect`` produces an object that can run upgrades.

    Example:
        manager = (
            UpgradeManagerBuilder()
            .with_configuration(estimated_swap_time=10.0)
            .with_observer(ProgressReporter())
            .connect(transport)
        )
    """

    def __init__(self, configuration: Optional[UpgradeConfiguration] = None):
        self.configuration = configuration or UpgradeConfiguration()
        self.observers: list[UpgradeObserver] = []
        self.log_sink: Optional[TrafficLogSink] = None

    def with_configuration(self, **changes) -> "UpgradeManagerBuilder":
        """Override configuration fields (validated)."""
        self.configuration = UpgradeConfiguration(
            **{**self.configuration.model_dump(), **changes}
        )
        return self

    def with_observer(self, observer: UpgradeObserver) -> "UpgradeManagerBuilder":
        self.observers.append(observer)
        return self

    def with_log_sink(self, log_sink: TrafficLogSink) -> "UpgradeManagerBuilder":
        self.log_sink = log_sink
        return self

    def connect(
        self,
        transport: Transport,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> FirmwareUpgradeManager:
        """Bind the settings to a transport.

        Args:
            transport: Transport to the device
            loop: Event loop runs execute on; needed only when the first
                start() may come from a thread without a running loop
        """
        return FirmwareUpgradeManager(
            transport,
            configuration=self.configuration,
            observer=CompositeObserver(self.observers),
            log_sink=self.log_sink,
            loop=loop,
        )
