"""Tests for client-held history serialization and trimming."""

from oshaberi_bot.ai.history import dump_history, parse_history, trim_history
from oshaberi_bot.ai.models import InlineData, Part, Turn


def alternating(count: int, first: str = "user") -> list[Turn]:
    roles = ["user", "model"] if first == "user" else ["model", "user"]
    return [Turn(role=roles[i % 2], parts=[Part(text=f"turn {i}")]) for i in range(count)]


class TestTrimHistory:
    def test_keeps_newest_turns_starting_with_user(self):
        turns = alternating(12, first="model")
        trimmed = trim_history(turns, max_length=5)

        assert [t.parts[0].text for t in trimmed] == [f"turn {i}" for i in range(7, 12)]
        assert trimmed[0].role == "user"

    def test_leading_model_turn_is_dropped(self):
        turns = alternating(11, first="model")
        trimmed = trim_history(turns, max_length=5)

        # the newest five start with a model turn
        assert [t.parts[0].text for t in trimmed] == ["turn 7", "turn 8", "turn 9", "turn 10"]
        assert trimmed[0].role == "user"

    def test_already_user_aligned_window_is_kept_whole(self):
        turns = alternating(11, first="user")
        trimmed = trim_history(turns)
        assert len(trimmed) == 5
        assert trimmed[0].role == "user"
        assert trimmed[-1].parts[0].text == "turn 10"

    def test_short_history_is_unchanged(self):
        turns = alternating(3)
        assert trim_history(turns) == turns

    def test_all_model_turns_trim_to_empty(self):
        turns = [Turn(role="model", parts=[Part(text="x")]) for _ in range(3)]
        assert trim_history(turns) == []


class TestParseHistory:
    def test_sanitize_strips_inline_images_and_keeps_order(self):
        turns = [
            Turn(
                role="user",
                parts=[
                    Part(text="look at this"),
                    Part(inline_data=InlineData(mime_type="image/png", data="aGVsbG8=")),
                ],
            ),
            Turn(role="model", parts=[Part(text="nice picture")]),
        ]

        parsed = parse_history(dump_history(turns))

        assert [t.role for t in parsed] == ["user", "model"]
        assert parsed[0].parts == [Part(text="look at this")]
        assert parsed[1].parts == [Part(text="nice picture")]

    def test_dump_omits_unset_fields(self):
        raw = dump_history([Turn(role="user", parts=[Part(text="hi")])])
        assert raw == '[{"role":"user","parts":[{"text":"hi"}]}]'

    def test_malformed_json_fails_closed(self):
        assert parse_history("{not json") == []

    def test_unexpected_shape_fails_closed(self):
        assert parse_history('[{"role": "system", "parts": []}]') == []
        assert parse_history('"resp_abc123"') == []
