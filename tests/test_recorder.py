import io
import os
import time

import pytest

from heapscribe.output import FILE_FORMAT_VERSION, HEAPTRACK_VERSION, OutputError
from heapscribe.recorder import Recorder, default_recorder
from heapscribe.tracetree import Trace


def records(path):
    text = path.read_bytes().decode("utf-8", "replace")
    return [line.split(" ") for line in text.splitlines()]


def by_mode(recs, mode):
    return [r for r in recs if r[0] == mode]


@pytest.fixture
def recorder():
    rec = Recorder()
    rec.timer_interval = None
    yield rec
    rec.stop()


@pytest.fixture
def out(tmp_path):
    return tmp_path / "trace.out"


def test_header_lines(recorder, out):
    recorder.init(str(out))
    recorder.stop()
    recs = records(out)
    assert recs[0] == ["v", f"{HEAPTRACK_VERSION:x}", f"{FILE_FORMAT_VERSION:x}"]
    assert len(by_mode(recs, "X")) == 1
    info = by_mode(recs, "I")
    assert len(info) == 1 and len(info[0]) == 3
    assert recs[-1][0] in ("c", "R")
    assert len(by_mode(recs, "c")) == 1


def test_pid_placeholder_in_name(recorder, tmp_path):
    recorder.init(str(tmp_path / "trace.$$"))
    recorder.stop()
    recs = records(tmp_path / f"trace.{os.getpid()}")
    assert recs[0][0] == "v"


def test_malloc_writes_trace_and_allocation(recorder, out):
    recorder.init(str(out))
    recorder.malloc(0x1000, 0x40, [0x31, 0x21, 0x11])
    recorder.stop()
    recs = records(out)
    traces = by_mode(recs, "t")
    assert {int(r[1], 16) + 1 for r in traces} == {0x11, 0x21, 0x31}
    assert traces[0][2] == "0"
    allocs = by_mode(recs, "+")
    assert len(allocs) == 1
    size, index, ptr = (int(v, 16) for v in allocs[0][1:])
    assert (size, ptr) == (0x40, 0x1000)
    assert index == len(traces)
    assert recs.index(["m", "1", "-"]) < recs.index(traces[0])


def test_same_trace_is_written_once(recorder, out):
    recorder.init(str(out))
    trace = Trace()
    trace.fill_test_data(2, 0x99)
    recorder.malloc(0x1000, 8, trace)
    recorder.malloc(0x2000, 16, trace)
    recorder.stop()
    recs = records(out)
    assert len(by_mode(recs, "t")) == len(trace)
    allocs = by_mode(recs, "+")
    assert allocs[0][2] == allocs[1][2]


def test_free_and_realloc(recorder, out):
    recorder.init(str(out))
    recorder.malloc(0x1000, 8, [0x11])
    recorder.free(0x1000)
    recorder.realloc(0x1000, 0x80, 0x2000, [0x11])
    recorder.realloc(0, 0x10, 0x3000, [0x11])
    recorder.realloc(0x2000, 0x10, 0, [0x11])
    recorder.stop()
    recs = [r for r in records(out) if r[0] in "+-"]
    modes = [r[0] for r in recs]
    assert modes == ["+", "-", "-", "+", "+"]
    assert int(recs[1][1], 16) == 0x1000
    assert int(recs[3][3], 16) == 0x2000
    assert int(recs[3][1], 16) == 0x80
    assert int(recs[4][3], 16) == 0x3000


def test_null_pointers_are_ignored(recorder, out):
    recorder.init(str(out))
    recorder.malloc(0, 8, [0x11])
    recorder.free(0)
    recorder.stop()
    recs = records(out)
    assert by_mode(recs, "+") == [] and by_mode(recs, "-") == []


def test_pause_and_resume(recorder, out):
    recorder.init(str(out))
    recorder.pause()
    assert recorder.is_paused()
    recorder.malloc(0x1000, 8, [0x11])
    recorder.free(0x1000)
    recorder.resume()
    assert not recorder.is_paused()
    recorder.malloc(0x2000, 8, [0x11])
    recorder.stop()
    allocs = by_mode(records(out), "+")
    assert [int(r[3], 16) for r in allocs] == [0x2000]
    assert by_mode(records(out), "-") == []


def test_module_cache_invalidation(recorder, out):
    recorder.init(str(out))
    recorder.malloc(0x1000, 8, [0x11])
    recorder.malloc(0x2000, 8, [0x11])
    recorder.invalidate_module_cache()
    recorder.malloc(0x3000, 8, [0x11])
    recorder.stop()
    recs = records(out)
    assert recs.count(["m", "1", "-"]) == 2


def test_callbacks(recorder, out):
    calls = []
    recorder.init(
        str(out),
        before=lambda: calls.append("before"),
        after=lambda writer: writer.write("A\n"),
        stop=lambda: calls.append("stop"),
    )
    assert calls == ["before"]
    recorder.init(str(out), before=lambda: calls.append("again"))
    assert calls == ["before"]
    recorder.stop()
    recorder.stop()
    assert calls == ["before", "stop"]
    assert ["A"] in records(out)


def test_is_active(recorder, out):
    assert not recorder.is_active()
    recorder.init(str(out))
    assert recorder.is_active()
    recorder.stop()
    assert not recorder.is_active()


def test_open_failure_raises_and_stops(recorder, tmp_path):
    stops = []
    with pytest.raises(OutputError):
        recorder.init(str(tmp_path / "missing" / "out"), stop=lambda: stops.append(1))
    assert stops == [1]
    assert not recorder.is_active()


def test_stream_output(recorder):
    captured = []

    class Capture(io.BytesIO):
        def close(self):
            captured.append(self.getvalue())
            super().close()

    recorder.init(Capture())
    assert recorder.is_active() is True
    recorder.free(0x1234)
    recorder.stop()
    assert recorder.is_active() is False
    assert len(captured) == 1
    lines = captured[0].decode("utf-8", "replace").splitlines()
    assert "- 1234" in lines


def test_calls_before_init_are_dropped(recorder, out):
    recorder.malloc(0x1000, 8, [0x11])
    recorder.invalidate_module_cache()
    recorder.init(str(out))
    recorder.stop()
    assert by_mode(records(out), "+") == []


def test_negative_pointer_raises_and_releases_lock(recorder, out):
    recorder.init(str(out))
    with pytest.raises(ValueError):
        recorder.malloc(-5, 8, [0x11])
    recorder.free(0x1000)
    recorder.stop()
    assert ["-", "1000"] in records(out)


def test_suppressions_in_header(recorder, out):
    recorder.suppressions = "leak:foo\nleak:bar\n"
    recorder.init(str(out))
    recorder.stop()
    lines = by_mode(records(out), "S")
    assert lines == [
        ["S", f"{len('leak:foo'):x}", "leak:foo"],
        ["S", f"{len('leak:bar'):x}", "leak:bar"],
    ]


def test_timer_writes_samples(out):
    rec = Recorder()
    rec.timer_interval = 0.01
    rec.init(str(out))
    time.sleep(0.3)
    rec.stop()
    assert len(by_mode(records(out), "c")) >= 2


def test_warning(recorder, capsys):
    recorder.warning(lambda stream: stream.write("something odd"))
    err = capsys.readouterr().err
    assert err.startswith(f"heaptrack warning [{os.getpid()}:")
    assert err.endswith("something odd\n")


def test_default_recorder_is_shared():
    first = default_recorder()
    second = default_recorder()
    assert isinstance(first, Recorder)
    assert second is first
    first.pause()
    try:
        assert second.is_paused() is True
    finally:
        first.resume()
    assert second.is_paused() is False