import errno
import io

import pytest

from heapscribe.linewriter import BUFFER_CAPACITY, LineWriter, hex_number


class _RecordingStream:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, chunk):
        self.data += chunk
        return len(chunk)

    def close(self):
        self.closed = True


def test_hex_line_matches_documented_example():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    writer.write_hex_line("i", 0x561072A1CF63, 1, 0x1C, 0x18, 0x70)
    writer.flush()
    assert stream.getvalue() == b"i 561072a1cf63 1 1c 18 70\n"


def test_hex_number_zero_uses_one_digit():
    assert hex_number(0) == "0"


@pytest.mark.parametrize("value", [1, 15, 16, 255, 4096, 2**32, 2**64 - 1])
def test_hex_number_round_trip(value):
    text = hex_number(value)
    assert int(text, 16) == value
    assert text == text.lower()
    assert not text.startswith("0")


def test_hex_number_max_width():
    assert len(hex_number(2**64 - 1)) == 16


@pytest.mark.parametrize("value", [-1, 2**64])
def test_hex_number_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        hex_number(value)


def test_write_is_buffered_until_flush():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    writer.write("X a b\n")
    assert stream.getvalue() == b""
    writer.flush()
    assert stream.getvalue() == b"X a b\n"


def test_full_buffer_flushes_automatically():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    lines = [f"{i:099d}\n" for i in range(BUFFER_CAPACITY // 100 + 5)]
    for line in lines:
        writer.write(line)
    assert len(stream.getvalue()) > 0
    writer.flush()
    assert stream.getvalue() == "".join(lines).encode()


def test_write_too_large_raises_efbig():
    writer = LineWriter(io.BytesIO())
    with pytest.raises(OSError) as info:
        writer.write("x" * BUFFER_CAPACITY)
    assert info.value.errno == errno.EFBIG


def test_write_string_prefixes_length():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    writer.write_string("some/module.so")
    writer.flush()
    size, rest = stream.getvalue().split(b" ", 1)
    assert int(size, 16) == len("some/module.so")
    assert rest == b"some/module.so"


def test_write_string_counts_bytes():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    writer.write_string("é")
    writer.flush()
    size, rest = stream.getvalue().split(b" ", 1)
    assert int(size, 16) == len("é".encode())
    assert rest.decode() == "é"


def test_write_string_larger_than_buffer_keeps_order():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    payload = "y" * (3 * BUFFER_CAPACITY)
    writer.write("S ")
    writer.write_string(payload)
    writer.write("\n")
    writer.flush()
    out = stream.getvalue()
    assert out.startswith(b"S ")
    size, rest = out[2:].split(b" ", 1)
    assert int(size, 16) == len(payload)
    assert rest == payload.encode() + b"\n"


def test_hex_line_requires_values():
    writer = LineWriter(io.BytesIO())
    with pytest.raises(TypeError):
        writer.write_hex_line("c")


def test_hex_line_rejects_long_mode():
    writer = LineWriter(io.BytesIO())
    with pytest.raises(ValueError):
        writer.write_hex_line("ab", 1)


def test_hex_line_rejects_too_many_values():
    writer = LineWriter(io.BytesIO())
    with pytest.raises(ValueError):
        writer.write_hex_line("t", *range(300))


def test_hex_line_negative_value_writes_nothing():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    with pytest.raises(ValueError):
        writer.write_hex_line("+", 1, -2)
    writer.flush()
    assert stream.getvalue() == b""


def test_closed_writer_refuses_output():
    stream = io.BytesIO()
    writer = LineWriter(stream)
    writer.close()
    assert writer.can_write() is False
    assert stream.closed
    with pytest.raises(ValueError):
        writer.write("x")
    with pytest.raises(ValueError):
        writer.flush()


def test_close_discards_unflushed_data():
    stream = _RecordingStream()
    writer = LineWriter(stream)
    writer.write_hex_line("c", 10)
    writer.close()
    assert stream.closed
    assert bytes(stream.data) == b""


def test_context_manager_flushes_and_closes():
    stream = _RecordingStream()
    with LineWriter(stream) as writer:
        writer.write_hex_line("R", 0x1F)
        assert writer.can_write()
    assert stream.closed
    assert bytes(stream.data) == b"R 1f\n"