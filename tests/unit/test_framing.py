"""Tests for newline stream framing."""

import pytest

from toolwire.socket_server.framing import StreamFramer

MESSAGE = b'{"jsonrpc":"2.0","id":1,"method":"echo","params":{"text":"hi"}}'


class TestStreamFramer:
    """Tests for StreamFramer.feed."""

    def test_single_complete_message(self) -> None:
        framer = StreamFramer()
        assert framer.feed(MESSAGE + b"\n") == [MESSAGE]
        assert framer.buffered == 0

    @pytest.mark.parametrize("offset", range(1, len(MESSAGE) + 1))
    def test_split_at_every_offset(self, offset: int) -> None:
        """A message split anywhere is emitted once, only after the delimiter."""
        framer = StreamFramer()
        data = MESSAGE + b"\n"

        first = framer.feed(data[:offset])
        second = framer.feed(data[offset:])

        assert first == []
        assert second == [MESSAGE]

    def test_one_byte_chunks(self) -> None:
        framer = StreamFramer()
        emitted: list[bytes] = []
        data = MESSAGE + b"\n"
        for i in range(len(data)):
            out = framer.feed(data[i : i + 1])
            if i < len(data) - 1:
                assert out == []
            emitted.extend(out)
        assert emitted == [MESSAGE]

    def test_multiple_messages_in_one_chunk(self) -> None:
        framer = StreamFramer()
        out = framer.feed(b"first\nsecond\nthird\npart")
        assert out == [b"first", b"second", b"third"]
        assert framer.buffered == len(b"part")
        assert framer.feed(b"ial\n") == [b"partial"]

    def test_empty_lines_skipped(self) -> None:
        framer = StreamFramer()
        assert framer.feed(b"\n\n  \none\n\n") == [b"one"]

    def test_reset_drops_partial(self) -> None:
        framer = StreamFramer()
        framer.feed(b"half")
        framer.reset()
        assert framer.buffered == 0
        assert framer.feed(b"whole\n") == [b"whole"]


class TestStreamFramerLimit:
    """Tests for the optional max_size guard."""

    def test_no_limit_by_default(self) -> None:
        framer = StreamFramer()
        big = b"x" * (2 * 1024 * 1024)
        assert framer.feed(big + b"\n") == [big]

    def test_oversized_complete_frame_is_dropped(self) -> None:
        sizes: list[int] = []
        framer = StreamFramer(max_size=8, on_oversized=sizes.append)

        out = framer.feed(b"ok\n" + b"y" * 20 + b"\nafter\n")

        assert out == [b"ok", b"after"]
        assert sizes == [20]

    def test_oversized_partial_frame_discarded_until_delimiter(self) -> None:
        sizes: list[int] = []
        framer = StreamFramer(max_size=8, on_oversized=sizes.append)

        assert framer.feed(b"z" * 10) == []
        assert sizes == [10]
        assert framer.buffered == 0

        # The rest of the oversized frame never surfaces as a message
        assert framer.feed(b"zzzz") == []
        assert framer.feed(b"zz\nnext\n") == [b"next"]
        assert sizes == [10]

    def test_frame_at_limit_is_accepted(self) -> None:
        framer = StreamFramer(max_size=4)
        assert framer.feed(b"abcd\n") == [b"abcd"]
