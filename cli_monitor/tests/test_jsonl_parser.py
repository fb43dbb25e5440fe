import json
import unittest
from unittest.mock import patch

from cli_monitor.parsers import jsonl as jsonl_parser
from cli_monitor.parsers.jsonl import parse_jsonl_chunk
from cli_monitor.store import SessionStore

_FILE = "/home/user/.claude/projects/abc123/sess-1.jsonl"


def _line(**overrides) -> bytes:
    payload = {
        "type": "user",
        "uuid": "uuid-1",
        "timestamp": "2025-01-15T12:00:00.000Z",
        "sessionId": "sess-1",
        "cwd": "/home/user/my-project",
        "message": {"role": "user", "content": "hello"},
    }
    payload.update(overrides)
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


class JsonlParserTests(unittest.TestCase):
    def test_complete_lines_are_fully_consumed(self) -> None:
        data = _line() + b"\n" + _line(uuid="uuid-2", type="progress") + b"\n"
        store = SessionStore()

        consumed = parse_jsonl_chunk(_FILE, data, 0, store)

        self.assertEqual(consumed, len(data))
        self.assertEqual(store.get_session("sess-1").messageCount, 1)

    def test_trailing_line_without_newline_is_not_consumed(self) -> None:
        valid = _line()
        trailing = _line(uuid="uuid-2", type="assistant", message={"role": "assistant", "content": "hi"})
        store = SessionStore()

        consumed = parse_jsonl_chunk(_FILE, valid + b"\n" + trailing, 0, store)

        self.assertEqual(consumed, len(valid) + 1)
        self.assertEqual(store.get_session("sess-1").messageCount, 1)

    def test_incomplete_first_line_consumes_nothing(self) -> None:
        store = SessionStore()
        self.assertEqual(parse_jsonl_chunk(_FILE, b'{"incomplete json', 0, store), 0)
        self.assertEqual(store.session_count(), 0)

    def test_malformed_complete_line_is_skipped_and_consumed(self) -> None:
        data = b"not valid json\n" + _line() + b"\n"
        store = SessionStore()

        with patch.object(jsonl_parser, "record_parser_failure") as failure:
            consumed = parse_jsonl_chunk(_FILE, data, 0, store)

        self.assertEqual(consumed, len(data))
        self.assertEqual(store.get_session("sess-1").messageCount, 1)
        failure.assert_called_once_with("jsonl")

    def test_deeply_nested_line_is_treated_as_malformed(self) -> None:
        data = b"[" * 200000 + b"\n" + _line() + b"\n"
        store = SessionStore()

        with patch.object(jsonl_parser, "record_parser_failure") as failure:
            consumed = parse_jsonl_chunk(_FILE, data, 0, store)

        self.assertEqual(consumed, len(data))
        self.assertEqual(store.get_session("sess-1").messageCount, 1)
        failure.assert_called_once_with("jsonl")

    def test_blank_lines_are_consumed(self) -> None:
        data = b"\n\n" + _line() + b"\n  \n"
        store = SessionStore()
        self.assertEqual(parse_jsonl_chunk(_FILE, data, 0, store), len(data))
        self.assertIsNotNone(store.get_session("sess-1"))

    def test_lines_missing_required_fields_are_dropped_but_consumed(self) -> None:
        data = (
            json.dumps({"type": "user", "timestamp": "2025-01-01T00:00:00Z"}) + "\n"
            + json.dumps({"sessionId": "sess-1", "timestamp": "2025-01-01T00:00:00Z"}) + "\n"
            + json.dumps({"sessionId": "", "type": "user"}) + "\n"
            + json.dumps(["not", "an", "object"]) + "\n"
        ).encode("utf-8")
        store = SessionStore()

        self.assertEqual(parse_jsonl_chunk(_FILE, data, 0, store), len(data))
        self.assertEqual(store.session_count(), 0)

    def test_multibyte_content_is_counted_in_bytes(self) -> None:
        text = "héllo wörld ✓ 日本語"
        data = _line(message={"role": "user", "content": text}) + b"\n"
        store = SessionStore()

        consumed = parse_jsonl_chunk(_FILE, data, 0, store)

        self.assertEqual(consumed, len(data))
        self.assertGreater(consumed, len(data.decode("utf-8")))
        self.assertEqual(store.get_session("sess-1").goal, text)

    def test_reparsing_from_zero_doubles_counters(self) -> None:
        assistant = {
            "role": "assistant",
            "content": [{"type": "text", "text": "Done"}],
            "usage": {
                "input_tokens": 100,
                "output_tokens": 40,
                "cache_creation": {"ephemeral_5m_input_tokens": 30},
            },
            "stop_reason": "end_turn",
        }
        data = b"\n".join(
            [
                _line(),
                _line(uuid="uuid-2", type="assistant", message=assistant),
                _line(uuid="uuid-3", type="assistant", message=assistant),
            ]
        ) + b"\n"
        store = SessionStore()

        parse_jsonl_chunk(_FILE, data, 0, store)
        first = store.get_session("sess-1")
        self.assertEqual(first.messageCount, 3)
        self.assertEqual(first.turnCount, 2)
        self.assertEqual(first.tokenUsage.inputTokens, 200)
        self.assertEqual(first.tokenUsage.outputTokens, 80)
        self.assertEqual(first.tokenUsage.ephemeral5mTokens, 60)

        # Offsets are what prevent double-processing; the parser itself does not.
        parse_jsonl_chunk(_FILE, data, 0, store)
        second = store.get_session("sess-1")
        self.assertEqual(second.messageCount, 6)
        self.assertEqual(second.turnCount, 4)
        self.assertEqual(second.tokenUsage.inputTokens, 400)
        self.assertEqual(second.tokenUsage.outputTokens, 160)
        self.assertEqual(second.tokenUsage.ephemeral5mTokens, 120)
        self.assertEqual(second.goal, "hello")

    def test_crlf_line_endings_are_accepted(self) -> None:
        data = _line() + b"\r\n"
        store = SessionStore()
        self.assertEqual(parse_jsonl_chunk(_FILE, data, 0, store), len(data))
        self.assertIsNotNone(store.get_session("sess-1"))

    def test_undecodable_bytes_keep_offsets_exact(self) -> None:
        data = b"\xff\xfe garbage\n" + _line() + b"\n"
        store = SessionStore()

        self.assertEqual(parse_jsonl_chunk(_FILE, data, 0, store), len(data))
        self.assertIsNotNone(store.get_session("sess-1"))

    def test_invalid_utf8_inside_strings_stays_serializable(self) -> None:
        data = _line(message={"role": "user", "content": "bad BYTE here"}).replace(b"BYTE", b"\xff") + b"\n"
        store = SessionStore()

        self.assertEqual(parse_jsonl_chunk(_FILE, data, 0, store), len(data))

        session = store.get_session("sess-1")
        self.assertEqual(session.goal, "bad � here")
        payload = json.loads(session.model_dump_json())
        self.assertEqual(payload["goal"], "bad � here")
        self.assertIn("sess-1", store.flush_changes().model_dump_json())

    def test_subagent_marker_above_watch_root_is_ignored(self) -> None:
        root = "/home/subagents/.claude/projects"
        nested = f"{root}/abc123/sess-1.jsonl"
        store = SessionStore()

        parse_jsonl_chunk(nested, _line() + b"\n", 0, store, watch_root=root)

        self.assertFalse(store.get_session("sess-1").isSubagent)


if __name__ == "__main__":
    unittest.main()
