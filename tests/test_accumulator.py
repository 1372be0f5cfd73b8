"""Tests for folding streamed deltas into one assistant message."""

from groq_agent.accumulator import StreamAccumulator, build_message_rules


def _feed(acc, *deltas):
    for delta in deltas:
        acc.add(delta)
    return acc


class TestContent:

    def test_content_appends_and_role_replaces(self):
        acc = _feed(StreamAccumulator(),
                    {"role": "assistant", "content": "Hel"},
                    {"role": "assistant", "content": "lo"},
                    {"content": " world"})

        assert acc.content == "Hello world"
        assert acc.message() == {"role": "assistant", "content": "Hello world"}

    def test_none_fields_are_ignored(self):
        acc = _feed(StreamAccumulator(), {"content": "a"}, {"content": None, "role": None})
        assert acc.message()["content"] == "a"

    def test_empty_stream_gives_empty_assistant_message(self):
        msg = StreamAccumulator().message()
        assert msg == {"role": "assistant", "content": ""}

    def test_non_dict_delta_is_skipped(self):
        acc = _feed(StreamAccumulator(), "garbage", {"content": "ok"})
        assert acc.delta_count == 1
        assert acc.content == "ok"

    def test_reasoning_content_appends(self):
        acc = _feed(StreamAccumulator(),
                    {"reasoning_content": "think "},
                    {"reasoning_content": "more"})
        assert acc.message()["reasoning_content"] == "think more"

    def test_unknown_text_field_appends(self):
        acc = _feed(StreamAccumulator(), {"extra": "a"}, {"extra": "b"})
        assert acc.message()["extra"] == "ab"


class TestToolCalls:

    def test_replace_mode_keeps_latest_full_arguments(self):
        acc = _feed(
            StreamAccumulator(),
            {"tool_calls": [{"index": 0, "id": "call_1", "type": "function",
                             "function": {"name": "bash", "arguments": ""}}]},
            {"tool_calls": [{"index": 0, "function": {"arguments": '{"command": '}}]},
            {"tool_calls": [{"index": 0, "function": {"arguments": '{"command": "ls"}'}}]},
        )

        calls = acc.tool_calls()
        assert len(calls) == 1
        assert calls[0].id == "call_1"
        assert calls[0].name == "bash"
        assert calls[0].arguments == '{"command": "ls"}'

    def test_append_mode_concatenates_fragments(self):
        acc = _feed(
            StreamAccumulator(build_message_rules("append")),
            {"tool_calls": [{"index": 0, "id": "c", "function": {"name": "bash", "arguments": '{"com'}}]},
            {"tool_calls": [{"index": 0, "function": {"arguments": 'mand": "pwd"}'}}]},
        )
        assert acc.tool_calls()[0].arguments == '{"command": "pwd"}'

    def test_name_replaces_rather_than_doubling(self):
        acc = _feed(
            StreamAccumulator(),
            {"tool_calls": [{"index": 0, "function": {"name": "view_file"}}]},
            {"tool_calls": [{"index": 0, "function": {"name": "view_file"}}]},
        )
        assert acc.tool_calls()[0].name == "view_file"

    def test_index_routes_to_separate_slots(self):
        acc = _feed(
            StreamAccumulator(),
            {"tool_calls": [{"index": 0, "id": "a", "function": {"name": "bash"}}]},
            {"tool_calls": [{"index": 1, "id": "b", "function": {"name": "view_file"}}]},
            {"tool_calls": [{"index": 0, "function": {"arguments": '{"command": "ls"}'}}]},
        )

        calls = acc.tool_calls()
        assert [c.id for c in calls] == ["a", "b"]
        assert calls[0].arguments == '{"command": "ls"}'
        assert calls[1].arguments == "{}"

    def test_index_is_stripped_from_final_message(self):
        acc = _feed(StreamAccumulator(),
                    {"tool_calls": [{"index": 0, "id": "a", "function": {"name": "bash"}}]})
        msg = acc.message()
        assert "index" not in msg["tool_calls"][0]
        assert msg["tool_calls"][0]["function"] == {"name": "bash"}

    def test_items_without_index_use_position(self):
        acc = _feed(StreamAccumulator(),
                    {"tool_calls": [{"id": "a", "function": {"name": "bash"}},
                                    {"id": "b", "function": {"name": "web_search"}}]})
        assert [c.name for c in acc.tool_calls()] == ["bash", "web_search"]

    def test_has_named_tool_call_waits_for_name(self):
        acc = StreamAccumulator()
        acc.add({"tool_calls": [{"index": 0, "id": "a"}]})
        assert acc.has_named_tool_call() is False

        acc.add({"tool_calls": [{"index": 0, "function": {"name": "bash"}}]})
        assert acc.has_named_tool_call() is True

    def test_gap_slots_are_dropped_from_message(self):
        acc = _feed(StreamAccumulator(),
                    {"tool_calls": [{"index": 2, "id": "c", "function": {"name": "bash"}}]})
        msg = acc.message()
        assert len(msg["tool_calls"]) == 1
        assert msg["tool_calls"][0]["id"] == "c"

    def test_huge_index_is_skipped(self):
        acc = _feed(StreamAccumulator(),
                    {"tool_calls": [{"index": 0, "id": "a", "function": {"name": "bash"}}]},
                    {"tool_calls": [{"index": 10**9, "id": "z", "function": {"name": "bash"}}]},
                    {"content": "ok"})

        assert [c.id for c in acc.tool_calls()] == ["a"]
        assert acc.message()["content"] == "ok"

    def test_structured_value_for_scalar_field_is_ignored(self):
        acc = _feed(StreamAccumulator(), {"role": "assistant"}, {"role": {"bad": 1}})
        assert acc.message()["role"] == "assistant"
