# tests/test_task_references.py — Card reference grammar tests
from task_references import (
    MAX_CONTEXT_LENGTH, MAX_SCAN_LENGTH,
    card_reference_key, format_task_reference, matches_task_reference, parse_task_references,
)


def _ids(text):
    return [r.card_id for r in parse_task_references(text, "commit")]


def test_hash_reference():
    refs = parse_task_references("Fix login #12", "commit", "https://x/commit/1", "abc")
    assert len(refs) == 1
    ref = refs[0]
    assert ref.card_id == "12"
    assert ref.context == "Fix login #12"
    assert ref.source_url == "https://x/commit/1"
    assert ref.source_sha == "abc"
    assert ref.prefix is None


def test_task_prefixed_forms():
    assert _ids("task-3, TASK 4 and task #5") == ["3", "4", "5"]
    assert _ids("see [task: 6] and (task:7)") == ["6", "7"]


def test_prefix_recorded_for_task_form():
    ref = parse_task_references("Closes task-9", "pull_request")[0]
    assert ref.prefix.lower() == "task"
    assert format_task_reference(ref) == "task-9"


def test_format_hash_reference():
    assert format_task_reference(parse_task_references("#42", "commit")[0]) == "#42"


def test_duplicates_collapse_to_first_occurrence():
    refs = parse_task_references("first line #8\nsecond task-8", "commit")
    assert [r.card_id for r in refs] == ["8"]
    assert refs[0].context == "first line #8"


def test_order_follows_text_position():
    assert _ids("task-2 then #1") == ["2", "1"]


def test_no_reference():
    assert _ids("Refactor the parser") == []
    assert _ids("") == []
    assert _ids(None) == []


def test_html_entities_and_words_are_not_references():
    assert _ids("Use &#39; quoting") == []
    assert _ids("issue#12") == []


def test_context_is_trimmed_line():
    text = "header\n   " + "x" * 200 + " #5   \nfooter"
    ref = parse_task_references(text, "commit")[0]
    assert "\n" not in ref.context
    assert len(ref.context) == MAX_CONTEXT_LENGTH


def test_text_is_truncated_before_scanning():
    text = "a" * MAX_SCAN_LENGTH + " #99"
    assert _ids(text) == []


def test_long_numeric_references_are_found():
    assert _ids("Closes #1234567890 and task-98765432101") == ["1234567890", "98765432101"]
    assert card_reference_key("pr-1234567890") == "1234567890"


def test_card_reference_key():
    assert card_reference_key("12") == "12"
    assert card_reference_key("pr-12") == "12"
    assert card_reference_key("task-12") == "12"
    assert card_reference_key("#12") == "12"
    assert card_reference_key("card-12") == "12"
    assert card_reference_key("abc12") is None
    assert card_reference_key("3f2a6c1e-0c5d-4b8e-9a51-0e2b5d6f7a11") is None
    assert card_reference_key(None) is None


def test_matching_is_exact_not_substring():
    ref = parse_task_references("#12", "commit")[0]
    assert matches_task_reference("12", ref)
    assert matches_task_reference("pr-12", ref)
    assert not matches_task_reference("112", ref)
    assert not matches_task_reference("1", ref)
    assert not matches_task_reference("pr-123", ref)
