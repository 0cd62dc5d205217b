from __future__ import annotations

from focuslog.models import ActivityDetails, Category
from focuslog.prompts import (
    MAX_CONTENT_LENGTH,
    build_category_choice_prompt,
    extract_json_object,
    format_activity,
    parse_category_choice,
    parse_category_suggestions,
    strip_code_fences,
)

BARE = '{"chosenCategoryName":"Work","summary":"Reviewing code","reasoning":"GitHub"}'


def test_fenced_json_parses_like_bare_json() -> None:
    fenced = f"```json\n{BARE}\n```"

    assert strip_code_fences(fenced) == BARE
    assert parse_category_choice(fenced) == parse_category_choice(BARE)
    assert parse_category_choice(BARE).chosen_category_name == "Work"


def test_trailing_prose_after_object_is_ignored() -> None:
    text = f"Sure! Here is my answer: {BARE} Let me know if you need more."

    choice = parse_category_choice(text)
    assert choice is not None
    assert choice.summary == "Reviewing code"


def test_braces_inside_strings_do_not_confuse_extraction() -> None:
    text = '{"chosenCategoryName": "Work", "reasoning": "saw } and { in title"} trailing }'

    assert extract_json_object(text) == {
        "chosenCategoryName": "Work",
        "reasoning": "saw } and { in title",
    }


def test_garbage_and_missing_name_are_rejected() -> None:
    assert parse_category_choice(None) is None
    assert parse_category_choice("I think it's Work") is None
    assert parse_category_choice('{"chosenCategoryName": ""}') is None
    assert parse_category_choice('{"summary": "x"}') is None


def test_activity_block_truncates_long_fields() -> None:
    details = ActivityDetails(
        owner_name="Google Chrome",
        title="Docs",
        url="https://example.com/" + "a" * 300,
        content="b" * (MAX_CONTENT_LENGTH + 50),
    )

    block = format_activity(details)
    url_line = next(line for line in block.splitlines() if line.startswith("URL: "))
    assert len(url_line) == len("URL: ") + 150 + 3
    assert block.count("b") <= MAX_CONTENT_LENGTH + 1
    assert "Window Title: Docs" in block


def test_choice_prompt_lists_categories_and_goals() -> None:
    categories = [
        Category(id="1", user_id="u", name="Work", description="Work-related activities"),
        Category(id="2", user_id="u", name="Entertainment"),
    ]

    messages = build_category_choice_prompt(
        "Ship the beta", categories, ActivityDetails(owner_name="Code")
    )

    assert len(messages) == 1
    content = messages[0]["content"]
    assert '- "Work": Work-related activities' in content
    assert '- "Entertainment"' in content
    assert "Ship the beta" in content
    assert "chosenCategoryName" in content


def test_suggestions_accept_wrapped_or_bare_lists() -> None:
    wrapped = '{"categories": [{"name": "Deep Work", "emoji": "🧠", "isProductive": true}]}'
    bare = '[{"name": "Gaming", "isProductive": false}, {"description": "no name"}]'

    assert [s.name for s in parse_category_suggestions(wrapped)] == ["Deep Work"]
    suggestions = parse_category_suggestions(bare)
    assert [s.name for s in suggestions] == ["Gaming"]
    assert suggestions[0].is_productive is False
    assert parse_category_suggestions("no json here") is None
