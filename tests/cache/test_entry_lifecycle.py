from __future__ import annotations

import asyncio
import gc
import logging

import pytest

from simplycache import (
    CacheEntry,
    CacheEvictedError,
    CachePurgedError,
    OpenError,
    ProtocolMisuseError,
    TransformError,
    TransformPipeline,
    map_stage,
)


def run_async(coro):
    return asyncio.run(coro)


class _ScriptedOpener:
    """Yields scripted chunks; `gate` pauses the source after `gate_after` chunks."""

    def __init__(
        self,
        chunks: list[bytes],
        *,
        gate: asyncio.Event | None = None,
        gate_after: int = 1,
        fail_with: Exception | None = None,
        fail_on_close: Exception | None = None,
    ) -> None:
        self.chunks = chunks
        self.gate = gate
        self.gate_after = gate_after
        self.fail_with = fail_with
        self.fail_on_close = fail_on_close
        self.opens = 0
        self.yielded = 0
        self.closed = False

    def open(self, path: str, *, chunk_size: int):
        _ = chunk_size
        self.opens += 1
        return self._iter(path)

    async def _iter(self, path: str):
        _ = path
        try:
            for index, chunk in enumerate(self.chunks):
                if self.gate is not None and index == self.gate_after:
                    await self.gate.wait()
                await asyncio.sleep(0)
                self.yielded += 1
                yield chunk
            if self.fail_with is not None:
                raise self.fail_with
        finally:
            self.closed = True
            if self.fail_on_close is not None:
                raise self.fail_on_close


def _entry(opener, **kwargs) -> CacheEntry:
    kwargs.setdefault("chunk_size", 4)
    return CacheEntry("data.bin", opener=opener, **kwargs)


def test_reader_attached_after_ready_replays_identical_bytes():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"alpha-", b"beta-", b"gamma"])
        entry = _entry(opener)
        entry.start()
        live = entry.attach()

        live_bytes = await live.read()
        await entry.wait_settled()
        assert entry.state == "ready"

        late = entry.attach()
        late_bytes = await late.read()

        assert live_bytes == late_bytes == b"alpha-beta-gamma"
        assert opener.opens == 1
        assert live.at_eof() and late.at_eof()
        assert await late.read() == b""

    run_async(scenario())


def test_reader_attached_mid_fill_replays_prefix_then_follows_live_appends():
    async def scenario() -> None:
        gate = asyncio.Event()
        opener = _ScriptedOpener([b"one|", b"two|", b"three"], gate=gate, gate_after=1)
        entry = _entry(opener)
        entry.start()
        first = entry.attach()

        assert await first.read(100) == b"one|"
        assert entry.state == "filling"

        second = entry.attach()
        assert await second.read(100) == b"one|"

        pending = asyncio.ensure_future(second.read())
        await asyncio.sleep(0)
        assert not pending.done()

        gate.set()
        assert await pending == b"two|three"
        assert await first.read() == b"two|three"
        assert entry.state == "ready"

    run_async(scenario())


def test_fill_failure_is_delivered_after_buffered_prefix_to_every_reader():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"partial"], fail_with=OSError("disk gone"))
        entry = _entry(opener)
        entry.start()
        reader = entry.attach()

        assert await reader.read(100) == b"partial"
        with pytest.raises(OpenError) as first_error:
            await reader.read(100)
        assert entry.state == "failed"
        assert isinstance(entry.error, OpenError)

        late = entry.attach()
        assert await late.read(100) == b"partial"
        with pytest.raises(OpenError) as late_error:
            await late.read(100)
        assert late_error.value is first_error.value
        assert opener.opens == 1

    run_async(scenario())



def test_repeated_reads_of_failed_entry_do_not_accumulate_frames_or_readers():
    async def scenario() -> None:
        opener = _ScriptedOpener([], fail_with=OSError("missing"))
        entry = _entry(opener)
        entry.start()
        await entry.wait_settled()

        seen = set()
        depths = []
        for _ in range(200):
            handle = entry.attach()
            try:
                await handle.read()
            except OpenError as exc:
                seen.add(id(exc))
                tb, depth = exc.__traceback__, 0
                while tb is not None:
                    depth += 1
                    tb = tb.tb_next
                depths.append(depth)
        del handle
        gc.collect()

        assert seen == {id(entry.error)}
        assert max(depths) < 10
        assert depths[-1] == depths[0]
        assert entry.reader_count <= 1

    run_async(scenario())


def test_failed_state_without_error_is_reported_as_misuse():
    async def scenario() -> None:
        entry = _entry(_ScriptedOpener([b"unused"]))
        reader = entry.attach()
        entry._state = "failed"  # noqa: SLF001

        with pytest.raises(ProtocolMisuseError, match="failed without an error"):
            await reader.read()

    run_async(scenario())


def test_raising_settle_listener_is_logged_and_fill_still_completes(caplog):
    def _boom(entry: CacheEntry) -> None:
        raise RuntimeError(f"listener exploded for {entry.path}")

    async def scenario() -> None:
        entry = _entry(_ScriptedOpener([b"abc", b"def"]), on_settled=_boom)
        entry.start()
        reader = entry.attach()

        assert await reader.read() == b"abcdef"
        assert entry.state == "ready"
        await entry.wait_closed()

    with caplog.at_level(logging.ERROR, logger="simplycache.entry"):
        run_async(scenario())

    assert "Settle listener failed for data.bin" in caplog.text
    assert "listener exploded for data.bin" in caplog.text

def test_pipeline_failure_surfaces_as_transform_error():
    def explode(chunk: bytes) -> bytes:
        if chunk == b"bad":
            raise ValueError("cannot transform")
        return chunk.upper()

    async def scenario() -> None:
        opener = _ScriptedOpener([b"ok", b"bad", b"never"])
        entry = _entry(opener, pipeline=TransformPipeline([map_stage(explode)]))
        entry.start()
        reader = entry.attach()

        assert await reader.read(100) == b"OK"
        with pytest.raises(TransformError, match="explode"):
            await reader.read(100)
        assert entry.state == "failed"
        assert opener.closed is True

    run_async(scenario())


def test_close_wakes_blocked_reader_and_cancels_fill():
    async def scenario() -> None:
        gate = asyncio.Event()
        opener = _ScriptedOpener([b"head", b"tail"], gate=gate, gate_after=1)
        entry = _entry(opener)
        entry.start()
        reader = entry.attach()
        assert await reader.read(10) == b"head"

        blocked = asyncio.ensure_future(reader.read(10))
        await asyncio.sleep(0)
        entry.close("purged")

        with pytest.raises(CachePurgedError):
            await blocked
        await entry.wait_closed(timeout=1.0)
        assert opener.closed is True
        assert entry.size == 0

        with pytest.raises(ProtocolMisuseError):
            entry.attach()

    run_async(scenario())


def test_evicted_entry_terminates_reader_even_with_buffered_data():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"abc", b"def"])
        entry = _entry(opener)
        entry.start()
        reader = entry.attach()
        await entry.wait_settled()

        entry.close("evicted")
        entry.close("purged")

        assert entry.closed_reason == "evicted"
        with pytest.raises(CacheEvictedError):
            await reader.read()

    run_async(scenario())


def test_wait_closed_reports_cleanup_failure():
    async def scenario() -> None:
        gate = asyncio.Event()
        opener = _ScriptedOpener(
            [b"a", b"b"],
            gate=gate,
            gate_after=1,
            fail_on_close=RuntimeError("release failed"),
        )
        entry = _entry(opener)
        entry.start()
        reader = entry.attach()
        assert await reader.read(1) == b"a"

        entry.close("purged")
        with pytest.raises(OpenError) as error:
            await entry.wait_closed(timeout=1.0)
        assert isinstance(error.value.__cause__, RuntimeError)

    run_async(scenario())


def test_fill_does_not_run_ahead_of_slowest_reader():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"xx"] * 10)
        entry = _entry(opener, high_water_mark=4)
        entry.start()
        reader = entry.attach()

        for _ in range(20):
            await asyncio.sleep(0)
        assert entry.size <= 4
        assert opener.yielded <= 3
        assert entry.state == "filling"

        assert await reader.read() == b"xx" * 10
        assert entry.state == "ready"

    run_async(scenario())


def test_dropping_slow_reader_releases_backpressure():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"xx"] * 6)
        entry = _entry(opener, high_water_mark=4)
        entry.start()
        fast = entry.attach()
        slow = entry.attach()

        assert await fast.read(2) == b"xx"
        slow.close()
        assert await fast.read() == b"xx" * 5

    run_async(scenario())


def test_unbounded_fill_completes_without_readers():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"xx"] * 50)
        entry = _entry(opener, high_water_mark=None)
        entry.start()

        await asyncio.wait_for(entry.wait_settled(), timeout=1.0)
        assert entry.state == "ready"
        assert entry.size == 100

    run_async(scenario())


def test_partial_reads_cross_chunk_boundaries():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"abc", b"def", b"gh"])
        entry = _entry(opener)
        entry.start()
        reader = entry.attach()
        await entry.wait_settled()

        assert await reader.read(2) == b"ab"
        assert await reader.readexactly(5) == b"cdefg"
        assert reader.offset == 7
        with pytest.raises(asyncio.IncompleteReadError) as error:
            await reader.readexactly(3)
        assert error.value.partial == b"h"

    run_async(scenario())


def test_async_iteration_yields_chunks_in_append_order():
    async def scenario() -> None:
        opener = _ScriptedOpener([b"1", b"22", b"333"])
        entry = _entry(opener)
        entry.start()
        reader = entry.attach()

        assert [chunk async for chunk in reader] == [b"1", b"22", b"333"]

    run_async(scenario())


def test_handle_misuse_fails_loudly():
    async def scenario() -> None:
        entry = _entry(_ScriptedOpener([b"data"]))
        entry.start()
        handle = entry.attach()
        await entry.wait_settled()

        with pytest.raises(ProtocolMisuseError):
            handle.write(b"nope")
        with pytest.raises(ProtocolMisuseError):
            entry.append(b"late")
        with pytest.raises(ProtocolMisuseError):
            entry.start()

        async with handle:
            assert await handle.read(0) == b""
        assert handle.closed
        with pytest.raises(ProtocolMisuseError):
            await handle.read()
        assert entry.reader_count == 0

    run_async(scenario())
