import asyncio
import itertools

from translator_core.streaming.framer import Frame, StreamFramer, extract_delta


STREAM = (
    'data: {"choices": [{"index": 0, "delta": {"role": "assistant"}}]}\n'
    "\n"
    'data: {"choices": [{"index": 0, "delta": {"content": "안녕"}}]}\r\n'
    ": keep-alive comment\n"
    'data: {"choices": [{"index": 0, "delta": {"content": "하세요, "}}]}\n'
    'data:{"choices": [{"index": 0, "delta": {"content": "world"}}]}\n'
    "data: [DONE]\n"
    'data: {"choices": [{"index": 0, "delta": {"content": "ignored"}}]}\n'
).encode("utf-8")


def deltas(fragments):
    framer = StreamFramer()
    frames = []
    for fragment in fragments:
        frames.extend(framer.feed(fragment))
    frames.extend(framer.finish())
    return [f.content for f in frames if f.kind == "chunk" and f.content], frames


def test_framer_unsplit_stream():
    contents, frames = deltas([STREAM])
    assert contents == ["안녕", "하세요, ", "world"]
    assert frames[-1] == Frame(kind="done")
    # role-only delta is a frame without content
    assert frames[0] == Frame(kind="chunk", content=None)


def test_framer_indifferent_to_fragment_boundaries():
    expected, _ = deltas([STREAM])
    # every single byte on its own, including split UTF-8 sequences
    assert deltas([bytes([b]) for b in STREAM])[0] == expected
    # every partition with two cut points
    step = 7
    for i, j in itertools.combinations(range(1, len(STREAM), step), 2):
        parts = [STREAM[:i], STREAM[i:j], STREAM[j:]]
        assert deltas(parts)[0] == expected, (i, j)


def test_framer_skips_malformed_lines():
    framer = StreamFramer()
    frames = framer.feed(
        'data: {"choices": [{"delta": {"content": "A"}}]}\n'
        "data: {not json at all\n"
        'data: {"choices": [{"delta": {"content": "B"}}]}\n'
    )
    assert [f.content for f in frames] == ["A", "B"]
    assert not framer.done


def test_framer_stops_after_done():
    framer = StreamFramer()
    frames = framer.feed('data: [DONE]\ndata: {"choices": [{"delta": {"content": "late"}}]}\n')
    assert frames == [Frame(kind="done")]
    assert framer.done
    assert framer.feed('data: {"choices": [{"delta": {"content": "later"}}]}\n') == []
    assert framer.finish() == []


def test_framer_flushes_trailing_line_on_finish():
    framer = StreamFramer()
    assert framer.feed('data: {"choices": [{"delta": {"content": "tail"}}]}') == []
    assert framer.finish() == [Frame(kind="chunk", content="tail")]


def test_extract_delta_absent_fields():
    assert extract_delta({}) is None
    assert extract_delta({"choices": []}) is None
    assert extract_delta({"choices": [{"delta": {}}]}) is None
    assert extract_delta({"choices": [{"delta": {"content": None}}]}) is None
    assert extract_delta([1, 2]) is None
    assert extract_delta({"choices": [{"delta": {"content": "x"}}]}) == "x"


def test_aframes_async_iteration():
    async def source():
        for piece in (b'data: {"choices": [{"delta": {"content": "he', b'llo"}}]}\nda', b"ta: [DONE]\n", b"data: junk\n"):
            yield piece

    async def collect():
        return [frame async for frame in StreamFramer().aframes(source())]

    frames = asyncio.run(collect())
    assert frames == [Frame(kind="chunk", content="hello"), Frame(kind="done")]
