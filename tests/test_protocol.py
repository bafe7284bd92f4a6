import json
import unittest

from summarycast.events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    MetaEvent,
    MetricsEvent,
    StatusEvent,
    is_terminal,
    merge_meta,
)
from summarycast.protocol import KEEPALIVE, SseParser, decode_event, encode_event, parse_sse


class EncodeEventTests(unittest.TestCase):
    def test_chunk_frame_layout(self) -> None:
        self.assertEqual(encode_event(ChunkEvent(text="Hi")), 'event: chunk\ndata: {"text": "Hi"}\n\n')

    def test_reset_flag_is_sent_only_when_set(self) -> None:
        frame = encode_event(ChunkEvent(text="Again", reset=True))
        self.assertEqual(frame, 'event: chunk\ndata: {"text": "Again", "reset": true}\n\n')

    def test_meta_uses_camel_case_and_drops_missing_fields(self) -> None:
        frame = encode_event(MetaEvent(model_label="gpt", input_summary="3 words"))
        data = json.loads(frame.split("data: ", 1)[1])
        self.assertEqual(data, {"modelLabel": "gpt", "inputSummary": "3 words"})

    def test_done_has_empty_payload(self) -> None:
        self.assertEqual(encode_event(DoneEvent()), "event: done\ndata: {}\n\n")


class DecodeEventTests(unittest.TestCase):
    def test_known_kinds(self) -> None:
        self.assertEqual(decode_event("status", '{"text": "Working"}'), StatusEvent(text="Working"))
        self.assertEqual(
            decode_event("metrics", '{"summary": "1.0s", "elapsedMs": 1000}'),
            MetricsEvent(summary="1.0s", elapsed_ms=1000),
        )
        self.assertEqual(decode_event("error", '{"message": "boom"}'), ErrorEvent(message="boom"))
        self.assertEqual(decode_event("done", ""), DoneEvent())

    def test_chunk_reset_flag(self) -> None:
        self.assertEqual(decode_event("chunk", '{"text": "a", "reset": true}'), ChunkEvent(text="a", reset=True))
        self.assertEqual(decode_event("chunk", '{"text": "a"}'), ChunkEvent(text="a"))

    def test_unknown_kind_is_ignored(self) -> None:
        self.assertIsNone(decode_event("progress", '{"pct": 5}'))

    def test_malformed_payloads_raise(self) -> None:
        with self.assertRaises(ValueError):
            decode_event("chunk", "{not json")
        with self.assertRaises(ValueError):
            decode_event("chunk", "{}")
        with self.assertRaises(ValueError):
            decode_event("meta", "[1, 2]")


class SseParserTests(unittest.TestCase):
    def test_keepalives_and_multi_line_data(self) -> None:
        text = KEEPALIVE + 'event: chunk\ndata: {"text":\ndata:  "a"}\n\n'
        events = list(parse_sse(text.splitlines()))
        self.assertEqual(events, [ChunkEvent(text="a")])

    def test_frame_only_completes_on_blank_line(self) -> None:
        parser = SseParser()
        self.assertIsNone(parser.feed("event: status"))
        self.assertIsNone(parser.feed('data: {"text": "x"}'))
        self.assertEqual(parser.feed(""), ("status", '{"text": "x"}'))

    def test_encoded_stream_decodes_in_order(self) -> None:
        events = [
            MetaEvent(model="openai/gpt-5-mini"),
            StatusEvent(text="Summarizing…"),
            ChunkEvent(text="Hello "),
            ChunkEvent(text="world"),
            MetricsEvent(summary="1.2s", details="calls=2"),
            DoneEvent(),
        ]
        wire = "".join(encode_event(e) for e in events)
        self.assertEqual(list(parse_sse(wire.splitlines())), events)


class EventHelpersTests(unittest.TestCase):
    def test_terminal_events(self) -> None:
        self.assertTrue(is_terminal(DoneEvent()))
        self.assertTrue(is_terminal(ErrorEvent(message="x")))
        self.assertFalse(is_terminal(ChunkEvent(text="x")))

    def test_merge_meta_never_erases_known_fields(self) -> None:
        merged = merge_meta(MetaEvent(input_summary="100 words"), MetaEvent(model="m", model_label="M"))
        self.assertEqual(merged, MetaEvent(model="m", model_label="M", input_summary="100 words"))
        self.assertEqual(merge_meta(None, MetaEvent(model="m")), MetaEvent(model="m"))


if __name__ == "__main__":
    unittest.main()
