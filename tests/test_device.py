"""Tests for device — handle close semantics and transfer dispatch."""

import threading
import time

import pytest

from fakes import FakeBackend, FakeDevice, bulk_pair, config
from rawusb.backend import (
    LIBUSB_ERROR_IO,
    LIBUSB_ERROR_PIPE,
    LIBUSB_ERROR_TIMEOUT,
    BackendError,
)
from rawusb.context import Context
from rawusb.descriptors import TransferType
from rawusb.errors import (
    ClosedHandleError,
    TransferError,
    UnsupportedTransferError,
    UsbError,
    UsbTimeoutError,
)


@pytest.fixture
def dev(ctx):
    return ctx.open(ctx.enumerate()[0])


def _interrupt_ctx(settings):
    device = FakeDevice(0x1209, 0x0010, configs=[config(
        bulk_pair(in_addr=0x83, out_addr=0x04, kind=TransferType.INTERRUPT))])
    backend = FakeBackend([device])
    return Context(backend, settings), backend


# =========================================================================
# Close
# =========================================================================

class TestClose:

    def test_close_releases_everything(self, ctx, backend, dev):
        handle = backend.opened[0]
        dev.close()
        assert dev.closed
        assert backend.releases == [(handle, 0)]
        assert backend.closed == [handle]
        assert ctx.arena.outstanding() == 0
        assert dev not in ctx.handles

    def test_close_twice_is_noop(self, ctx, backend, dev):
        dev.close()
        dev.close()
        assert len(backend.releases) == 1
        assert len(backend.closed) == 1
        assert ctx.arena.outstanding() == 0

    def test_context_manager_closes(self, ctx, backend):
        with ctx.open(ctx.enumerate()[0]) as dev:
            assert not dev.closed
        assert dev.closed
        assert len(backend.closed) == 1

    def test_release_failure_still_closes(self, ctx, backend, dev):
        backend.release_error = BackendError(LIBUSB_ERROR_IO)
        with pytest.raises(UsbError):
            dev.close()
        assert dev.closed
        assert backend.closed == backend.opened
        assert ctx.arena.outstanding() == 0
        dev.close()  # still a no-op afterwards

    def test_transfer_after_close_fails(self, backend, dev):
        dev.close()
        with pytest.raises(ClosedHandleError):
            dev.write(b'x')
        with pytest.raises(ClosedHandleError):
            dev.read(bytearray(8))
        assert backend.transfers == []

    def test_repr(self, dev):
        assert "open" in repr(dev)
        dev.close()
        assert "closed" in repr(dev)


# =========================================================================
# Dispatch
# =========================================================================

class TestDispatch:

    def test_bulk_write(self, backend, dev):
        assert dev.write(b'\x01\x02\x03') == 3
        assert backend.transfers == [('bulk_write', 0x01, b'\x01\x02\x03', 0)]

    def test_bulk_read(self, backend, dev):
        backend.read_data[0x81] = b'hello'
        buf = bytearray(16)
        n = dev.read(buf)
        assert n == 5
        assert bytes(buf[:n]) == b'hello'
        assert backend.transfers == [('bulk_read', 0x81, 16, 0)]

    def test_read_bytes(self, backend, dev):
        backend.read_data[0x81] = b'\xAA\xBB'
        assert dev.read_bytes(64) == b'\xAA\xBB'

    def test_interrupt_dispatch(self, settings):
        ctx, backend = _interrupt_ctx(settings)
        backend.read_data[0x83] = b'ok'
        with ctx.open(ctx.enumerate()[0]) as dev:
            dev.write(b'ping')
            assert dev.read_bytes(8) == b'ok'
        assert [t[0] for t in backend.transfers] == ['interrupt_write', 'interrupt_read']
        assert backend.transfers[0][1] == 0x04
        ctx.close()

    @pytest.mark.parametrize("kind", [TransferType.CONTROL, TransferType.ISOCHRONOUS])
    def test_unsupported_kind_makes_no_native_call(self, backend, dev, kind):
        dev.info.writer_transfer_type = kind
        dev.info.reader_transfer_type = kind
        with pytest.raises(UnsupportedTransferError):
            dev.write(b'x')
        with pytest.raises(UnsupportedTransferError):
            dev.read(bytearray(4))
        assert backend.transfers == []

    def test_zero_length_forwarded(self, backend, dev):
        assert dev.write(b'') == 0
        assert backend.transfers == [('bulk_write', 0x01, b'', 0)]

    def test_timeouts_passed_to_backend(self, backend, dev):
        dev.set_write_timeout(150)
        dev.set_read_timeout(75)
        dev.write(b'a')
        dev.read(bytearray(1))
        assert backend.transfers[0][3] == 150
        assert backend.transfers[1][3] == 75

    def test_negative_timeout_rejected(self, dev):
        with pytest.raises(ValueError):
            dev.set_read_timeout(-1)
        with pytest.raises(ValueError):
            dev.set_write_timeout(-5)


# =========================================================================
# Errors
# =========================================================================

class TestTransferErrors:

    def test_timeout_is_distinct_from_transfer_error(self, backend, dev):
        def never_completes(op, handle, endpoint, payload, timeout):
            time.sleep(timeout / 1000.0)
            raise BackendError(LIBUSB_ERROR_TIMEOUT)

        backend.transfer_hook = never_completes
        dev.set_write_timeout(1)
        with pytest.raises(UsbTimeoutError) as exc_info:
            dev.write(b'x')
        assert not isinstance(exc_info.value, TransferError)
        assert isinstance(exc_info.value, TimeoutError)
        assert isinstance(exc_info.value.__cause__, BackendError)

    def test_read_timeout(self, backend, dev):
        backend.transfer_error = BackendError(LIBUSB_ERROR_TIMEOUT)
        dev.set_read_timeout(1)
        with pytest.raises(UsbTimeoutError):
            dev.read(bytearray(8))

    def test_other_failure_is_transfer_error(self, backend, dev):
        backend.transfer_error = BackendError(LIBUSB_ERROR_PIPE)
        with pytest.raises(TransferError) as exc_info:
            dev.write(b'x')
        assert exc_info.value.code == LIBUSB_ERROR_PIPE
        assert exc_info.value.reason

    def test_retry_after_timeout(self, backend, dev):
        calls = []

        def flaky(op, handle, endpoint, payload, timeout):
            calls.append(op)
            if len(calls) == 1:
                raise BackendError(LIBUSB_ERROR_TIMEOUT)
            return len(payload)

        backend.transfer_hook = flaky
        with pytest.raises(UsbTimeoutError):
            dev.write(b'abc')
        assert dev.write(b'abc') == 3


# =========================================================================
# Concurrency
# =========================================================================

class TestConcurrency:

    def test_same_handle_writes_serialize(self, backend, dev):
        first_started = threading.Event()
        release_first = threading.Event()
        events = []

        def hook(op, handle, endpoint, payload, timeout):
            events.append(('start', payload))
            if payload == b'first':
                first_started.set()
                release_first.wait(5)
            events.append(('end', payload))
            return len(payload)

        backend.transfer_hook = hook
        t1 = threading.Thread(target=dev.write, args=(b'first',))
        t1.start()
        assert first_started.wait(5)

        t2 = threading.Thread(target=dev.write, args=(b'second',))
        t2.start()
        t2.join(0.1)
        assert events == [('start', b'first')]

        release_first.set()
        t1.join(5)
        t2.join(5)
        assert events == [('start', b'first'), ('end', b'first'),
                          ('start', b'second'), ('end', b'second')]

    def test_different_handles_do_not_block(self, settings):
        a = FakeDevice(0x1209, 0x0001, port=1)
        b = FakeDevice(0x1209, 0x0002, port=2)
        backend = FakeBackend([a, b])
        ctx = Context(backend, settings)
        infos = ctx.enumerate()
        dev_a = ctx.open(infos[0])
        dev_b = ctx.open(infos[1])

        a_started = threading.Event()
        release_a = threading.Event()

        def hook(op, handle, endpoint, payload, timeout):
            if handle.device is a:
                a_started.set()
                release_a.wait(5)
            return len(payload)

        backend.transfer_hook = hook
        t = threading.Thread(target=dev_a.write, args=(b'slow',))
        t.start()
        assert a_started.wait(5)

        assert dev_b.write(b'fast') == 4
        assert t.is_alive()

        release_a.set()
        t.join(5)
        ctx.close()

    def test_timeout_change_does_not_affect_inflight(self, backend, dev):
        started = threading.Event()
        proceed = threading.Event()
        seen = []

        def hook(op, handle, endpoint, payload, timeout):
            seen.append(timeout)
            if not started.is_set():
                started.set()
                proceed.wait(5)
            return len(payload)

        backend.transfer_hook = hook
        dev.set_write_timeout(100)
        t = threading.Thread(target=dev.write, args=(b'x',))
        t.start()
        assert started.wait(5)

        setter = threading.Thread(target=dev.set_write_timeout, args=(900,))
        setter.start()
        proceed.set()
        t.join(5)
        setter.join(5)

        dev.write(b'y')
        assert seen == [100, 900]
