# heapscribe

heapscribe records heap allocation events (allocations, frees,
reallocations, loaded modules, timestamps and resident set size) into a
compact, line-based trace, and provides the pieces to read such a trace
back field by field.

## Installation

```
pip install heapscribe
```

For running the test suite:

```
pip install "heapscribe[test]"
pytest
```

## The trace format

Every record is one line: a single mode character, a space, and then
lower-case hexadecimal numbers separated by spaces, for example

```
+ 40 3 561072a1cf60
```

The recorder writes these line kinds:

| line | meaning |
|------|---------|
| `v <version> <format>` | tracker version (packed as `major << 16 \| minor << 8 \| patch`) and file-format version |
| `x <len> <path>` | the running executable |
| `X <args...>` | the command line |
| `I <page size> <physical pages>` | system information |
| `S <len> <rule>` | one suppression rule |
| `m 1 -` / `m <len> <name> <base> <offset> <size>...` | reset of, and entries of, the module list |
| `t <ip> <parent>` | a new node of the backtrace tree |
| `+ <size> <trace> <ptr>` | an allocation |
| `- <ptr>` | a free |
| `c <ms>` | a timestamp in milliseconds since start |
| `R <pages>` | resident set size in pages |

Strings may be written with a hexadecimal length prefix so that they can
contain spaces.

## Writing traces

`heapscribe.linewriter.LineWriter` buffers output (4096 bytes) and hands it
to a binary stream when the buffer fills, on `flush()`, or when a `with`
block is left. `close()` discards what was not flushed.

```python
import io
from heapscribe.linewriter import LineWriter, hex_number

buf = io.BytesIO()
writer = LineWriter(buf)
writer.write_hex_line("+", 0x40, 3, 0x561072A1CF60)
writer.write_string("some text with spaces")   # written as "15 some text with spaces"
writer.write("\n")
writer.flush()

hex_number(255)  # "ff"
```

`hex_number` accepts unsigned 64-bit integers only and raises `ValueError`
otherwise. A single message that does not fit into the buffer raises
`OSError` (`EFBIG`).

## Reading traces

`heapscribe.linereader.LineReader` walks a text or binary stream line by line;
iterating over it yields the mode of each line as it becomes current.

```python
import io
from heapscribe.linereader import LineReader

reader = LineReader(io.StringIO("+ 40 3 561072a1cf60\n"), expect_sized_strings=False)
for mode in reader:
    if mode == "+":
        size = reader.read_hex()
        trace = reader.read_hex()
        ptr = reader.read_hex()
```

`read_hex`, `read_string` and `read_flag` raise
`heapscribe.linereader.LineReadError` on malformed or missing fields. With
`expect_sized_strings=True`, `read_string` reads length-prefixed strings.
An empty line has the mode `#`.

## Backtraces and bookkeeping

- `heapscribe.tracetree.Trace` holds up to 64 instruction pointers.
  `fill(skip)` captures the calling Python stack, `fill_test_data(n, leaf)`
  builds a synthetic trace, and `print(out)` lists the frames.
- `heapscribe.tracetree.TraceTree.index(trace, callback)` stores a trace in a
  top-down tree and returns the index of its innermost pointer, calling
  `callback(ip, parent_index)` for every pointer seen for the first time; a
  falsy callback result aborts and returns 0. `clear()` resets the tree.
- `heapscribe.pointermap.PointerMap` maps pointer addresses to allocation-info
  indices with `add_pointer` and `take_pointer` (which returns `None` for an
  unknown pointer). `AllocationInfoSet.add(size, trace_index)` deduplicates
  (size, trace) pairs and returns `(index, newly_added)`.
- `heapscribe.indices` provides typed index values (`StringIndex`,
  `ModuleIndex`, `FunctionIndex`, `FileIndex`, `IpIndex`, `TraceIndex`,
  `AllocationIndex`, `AllocationInfoIndex`) that compare only with indices of
  the same kind, together with `Symbol` and `FileLine`.
- `heapscribe.allocationdata.AllocationData` accumulates allocation costs and
  supports `+`, `-`, `+=` and `-=`; `FilterParameters` describes a time range
  and suppression settings, with `is_filtered_by_time(total_time)`.

## Recording

`heapscribe.recorder.Recorder` writes events to one output under a single
lock. `init(output, before, after, stop)` takes a file name (`$$` becomes the
process id; `"-"`/`"stdout"` and `"stderr"` select the standard streams; the
default is `heaptrack.$$`) or an open binary stream. The file is locked
exclusively; failure raises `heapscribe.output.OutputError`.

```python
from heapscribe.recorder import Recorder
from heapscribe.tracetree import Trace

recorder = Recorder()
recorder.init("heaptrack.$$", None, None, None)
trace = Trace()
trace.fill(0)
recorder.malloc(0x1000, 64, trace)
recorder.free(0x1000)
recorder.stop()
```

- `before` runs before the output is opened, `after` receives the
  `LineWriter` once the header is written, `stop` runs when recording ends.
- `malloc`, `free` and `realloc` ignore null pointers; without a `trace`
  argument the caller's stack is captured.
- `pause()`, `resume()` and `is_paused()` control recording; `is_active()`
  tells whether an output is open.
- `invalidate_module_cache()` makes the next allocation rewrite the module
  list.
- `warning(callback)` writes a tagged line to standard error, with
  `callback` writing the message text.
- The attribute `timer_interval` (default 0.01 s; `None` turns it off) sets
  how often a background thread writes `c` and `R` samples, and
  `suppressions` sets the rules written as `S` lines.
- The recorder registers an exit handler that stops it, and a forked child
  process stops writing to the parent's output.

`heapscribe.default_recorder` lives in `heapscribe.recorder` as
`default_recorder()`, the process-wide instance. For code that manages its own
memory pools, `heapscribe.api` offers `report_alloc`, `report_realloc` and
`report_free` (plus `mempool_alloc` and `mempool_free`), which forward to it
and record nothing while it is not active.

`heapscribe.output` holds the helpers the recorder uses: `output_path`,
`open_output`, `elapsed_ms`, `read_rss_pages` and the `write_*` functions for
the header and module lines. Executable, command line, RSS and module list
come from `/proc/self`; where that is unavailable the `x` line is left out,
RSS sampling is switched off with a warning, and the module list is only the
`m 1 -` reset line.

## The environment helper

The `heapscribe-env` command prints the expression a debugger would evaluate
to load a shared library into a running process:

```
heapscribe-env dlopen /path/to/library.so
```

It exits with status 1 when the check is missing, unknown, or lacks its
library argument.

## What heapscribe does not do

- It does not intercept memory allocation by itself: events are recorded only
  when code reports them to a `Recorder` or through `heapscribe.api`.
- It does not launch or attach to other programs.
- It does not analyse traces: there is no report, summary, flame graph or
  viewer. `LineReader` parses lines, but turning a trace into results is
  left to the user.
- It does not compress its output.