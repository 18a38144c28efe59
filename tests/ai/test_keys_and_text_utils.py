from __future__ import annotations

from app.services.ai.keys import KeyPool
from app.services.ai.text_utils import clean_model_text, ensure_string_list, safe_slice, sanitize_input, try_parse_json


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_key_pool_rotates_round_robin() -> None:
    pool = KeyPool(["a", "b", "c"], clock=FakeClock())

    assert [pool.next_key() for _ in range(4)] == ["a", "b", "c", "a"]


def test_rate_limited_key_is_skipped_until_cooldown_elapses() -> None:
    clock = FakeClock()
    pool = KeyPool(["a", "b", "c"], clock=clock)
    for _ in range(4):
        pool.next_key()

    pool.mark_rate_limited("b", 60)
    picks = [pool.next_key() for _ in range(6)]

    assert "b" not in picks
    assert picks[:4] == ["c", "a", "c", "a"]

    clock.now = 60.5
    assert not pool.is_cooling("b")
    assert "b" in [pool.next_key() for _ in range(3)]


def test_all_keys_cooling_degrades_to_first_key() -> None:
    pool = KeyPool(["a", "b"], clock=FakeClock())
    pool.mark_rate_limited("a", 60)
    pool.mark_rate_limited("b", 60)

    assert pool.next_key() == "a"


def test_empty_key_pool_returns_empty_string() -> None:
    pool = KeyPool(["", ""])

    assert len(pool) == 0
    assert pool.next_key() == ""


def test_clean_model_text_strips_fences_and_extracts_object() -> None:
    raw = 'Here you go:\n```json\n{"summary": "ok", "nested": {"a": 1}}\n```\nThanks'

    assert clean_model_text(raw) == '{"summary": "ok", "nested": {"a": 1}}'
    assert clean_model_text("") == ""
    assert clean_model_text("`plain`") == "plain"


def test_try_parse_json_falls_back_to_embedded_object() -> None:
    assert try_parse_json('{"a": 1}') == {"a": 1}
    assert try_parse_json('noise {"a": [1, 2]} trailing') == {"a": [1, 2]}
    assert try_parse_json("not json at all") is None
    assert try_parse_json(None) is None


def test_safe_slice_never_leaves_a_dangling_high_surrogate() -> None:
    text = "ab" + "\ud83d" + "\ude00" + "cd"

    assert safe_slice(text, 3) == "ab"
    assert safe_slice(text, 4) == text[:4]
    assert safe_slice("short", 10) == "short"
    assert safe_slice(None, 5) == ""


def test_sanitize_input_removes_control_characters_and_angle_brackets() -> None:
    assert sanitize_input("  hi\x00 <b>there</b>\x07\n ") == "hi bthere/b"
    assert sanitize_input(None) == ""


def test_ensure_string_list_filters_blanks_and_non_lists() -> None:
    assert ensure_string_list(["a", " ", None, 3]) == ["a", "3"]
    assert ensure_string_list("a,b") == []
