"""
Tests for field_mapping.py - chip resolution and chat input classification.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import FIXED_NOW
from field_mapping import (
    can_register_task,
    extract_title_from_input,
    generate_field_question,
    generate_next_question,
    map_selection_to_field,
    parse_chat_input,
)
from models import TaskInfo

TITLED = TaskInfo(title="会議")
REQUIRED_ONLY = TaskInfo(title="会議", category="work")


class TestMapSelectionToField:
    def test_decline_cancels(self):
        """登録しない is reported as a cancel action."""
        result = map_selection_to_field("登録しない", "category", TITLED)
        assert result.success is False
        assert result.action == "cancel"

    def test_register_anyway(self):
        """とりあえず登録 is reported as a force-register action."""
        result = map_selection_to_field("とりあえず登録", "deadline", REQUIRED_ONLY)
        assert result.success is False
        assert result.action == "register_anyway"

    def test_category_chip(self):
        """A category chip resolves and points at the first optional field."""
        result = map_selection_to_field("仕事", "category", TITLED)
        assert result.success is True
        assert result.field == "category"
        assert result.value == "work"
        assert result.next_field == "deadline"

    def test_skip_moves_past_field(self):
        """Skip nulls the current field and moves on."""
        result = map_selection_to_field("スキップ", "deadline", REQUIRED_ONLY)
        assert result.success is True
        assert result.field == "deadline"
        assert result.value is None
        assert result.next_field == "scheduledDate"

    def test_skip_respects_earlier_answers(self):
        """Fields answered earlier are not offered again after a skip."""
        result = map_selection_to_field("スキップ", "scheduledDate", REQUIRED_ONLY, resolved=["deadline"])
        assert result.next_field == "scheduledTime"

    def test_skip_without_field_fails(self):
        """Skip needs a current field."""
        result = map_selection_to_field("スキップ", None, REQUIRED_ONLY)
        assert result.success is False
        assert result.action is None

    def test_clock_time_for_scheduled_time(self):
        """A typed clock time answers the scheduledTime question."""
        info = REQUIRED_ONLY.model_copy(update={"scheduled_date": "2026-10-20"})
        result = map_selection_to_field("午後2時", "scheduledTime", info, resolved=["deadline"])
        assert result.success is True
        assert result.value == "14:00"
        assert result.next_field == "durationMinutes"

    def test_time_slot_chip(self):
        """Time slot chips map to slot names."""
        result = map_selection_to_field("午後", "scheduledTime", REQUIRED_ONLY)
        assert result.value == "afternoon"

    def test_relative_date_chip(self):
        """Relative date chips resolve against the given base time."""
        result = map_selection_to_field("明日", "scheduledDate", REQUIRED_ONLY, base=FIXED_NOW)
        assert result.value == "2026-10-20"

    def test_free_text_is_not_a_selection(self):
        """Text that matches no chip is left for the LLM."""
        result = map_selection_to_field("ABC社に連絡する件", "category", TITLED)
        assert result.success is False
        assert result.action is None


class TestParseChatInput:
    def test_cancel(self):
        """登録しない classifies as cancel."""
        assert parse_chat_input("登録しない", "category", TITLED) == {"type": "cancel"}

    def test_time_input(self):
        """A typed clock time classifies as time input."""
        result = parse_chat_input("15:30", "scheduledTime", REQUIRED_ONLY)
        assert result["type"] == "time_input"
        assert result["value"] == "15:30"

    def test_slot_is_selection(self):
        """A time slot chip classifies as a selection."""
        result = parse_chat_input("夜", "scheduledTime", REQUIRED_ONLY)
        assert result["type"] == "selection"
        assert result["value"] == "evening"

    def test_date_selection(self):
        """A date chip carries the resolved date and the next field."""
        result = parse_chat_input("今日", "scheduledDate", REQUIRED_ONLY, base=FIXED_NOW)
        assert result == {"type": "selection", "field": "scheduledDate", "value": "2026-10-19", "next_field": "deadline"}

    def test_skip_is_selection(self):
        """Skip classifies as a selection of None."""
        result = parse_chat_input("スキップ", "durationMinutes", REQUIRED_ONLY)
        assert result["type"] == "selection"
        assert result["value"] is None

    def test_free_text(self):
        """Anything else is free text."""
        assert parse_chat_input("上司に確認してから", "category", TITLED) == {"type": "free_text"}


class TestNextQuestion:
    def test_category_question_has_universal_chips(self):
        """Questions end with the skip and register-anyway chips."""
        question = generate_next_question(TITLED, is_initial=True)
        assert question["field"] == "category"
        assert question["options"] == ["買い物", "返信", "仕事", "個人", "その他", "スキップ", "とりあえず登録"]

    def test_initial_with_required_done_has_no_question(self):
        """Nothing to ask when required fields are filled on an initial pass."""
        assert generate_next_question(REQUIRED_ONLY, is_initial=True)["field"] is None

    def test_optional_walk(self):
        """Later passes walk the optional fields."""
        question = generate_next_question(REQUIRED_ONLY, resolved=["deadline"])
        assert question["field"] == "scheduledDate"
        assert question["question"] == "いつ実行する予定ですか？"

    def test_field_question_for_title(self):
        """The title question has only the universal chips."""
        question = generate_field_question("title")
        assert question == {
            "field": "title",
            "question": "タスクの内容を教えてください",
            "options": ["スキップ", "とりあえず登録"],
        }

    def test_can_register(self):
        """Registration needs title and category."""
        assert can_register_task(REQUIRED_ONLY)
        assert not can_register_task(TITLED)


class TestExtractTitle:
    def test_strips_time_expressions(self):
        """Time expressions are removed, particles are kept."""
        assert extract_title_from_input("明日14時に会議") == "に会議"

    def test_falls_back_to_whole_input(self):
        """If stripping leaves too little, the whole input is used."""
        assert extract_title_from_input("明日") == "明日"

    def test_too_short(self):
        """Single characters and blanks give no title."""
        assert extract_title_from_input("a") is None
        assert extract_title_from_input("   ") is None
