from __future__ import annotations

import json

from storyloop.schema import TaskStore, UserStory


def test_story_defaults_fill_missing_fields() -> None:
    story = UserStory.model_validate({})

    assert story.id == "unknown"
    assert story.title == "Untitled"
    assert story.priority is None
    assert story.passes is False
    assert story.acceptance_criteria == []


def test_null_fields_fall_back_to_defaults() -> None:
    story = UserStory.model_validate(
        {"id": None, "title": None, "priority": None, "passes": None, "acceptanceCriteria": None}
    )

    assert story.id == "unknown"
    assert story.title == "Untitled"
    assert story.priority is None
    assert story.passes is False
    assert story.acceptance_criteria == []


def test_only_json_true_counts_as_passing() -> None:
    assert UserStory.model_validate({"passes": True}).passes is True
    for value in ("true", 1, "yes", False):
        assert UserStory.model_validate({"passes": value}).passes is False


def test_numeric_identifiers_are_kept_as_text() -> None:
    story = UserStory.model_validate({"id": 7, "title": "Numbered"})

    assert story.id == "7"


def test_blank_branch_name_is_absent() -> None:
    assert TaskStore.model_validate({"branchName": "   "}).branch_name is None
    assert TaskStore.model_validate({"branchName": " feature/x "}).branch_name == "feature/x"
    assert TaskStore.model_validate({}).branch_name is None


def test_null_story_list_is_empty() -> None:
    store = TaskStore.model_validate({"projectName": None, "userStories": None})

    assert store.project_name == ""
    assert store.user_stories == []


def test_to_json_echoes_original_keys_only() -> None:
    story = UserStory.model_validate(
        {
            "id": "US-004",
            "title": "Export CSV",
            "acceptanceCriteria": ["Download button"],
            "estimate": "S",
        }
    )

    payload = json.loads(story.to_json())

    assert payload == {
        "id": "US-004",
        "title": "Export CSV",
        "acceptanceCriteria": ["Download button"],
        "estimate": "S",
    }


def test_free_form_criteria_and_notes_are_accepted() -> None:
    story = UserStory.model_validate(
        {"id": "US-009", "acceptanceCriteria": ["works", 42], "technicalNotes": ["a", "b"]}
    )

    assert story.acceptance_criteria == ["works", 42]
    assert json.loads(story.to_json())["technicalNotes"] == ["a", "b"]


def test_unprioritised_story_sorts_after_large_priority() -> None:
    unset = UserStory.model_validate({"id": "none"})
    large = UserStory.model_validate({"id": "big", "priority": 100000})

    assert sorted([unset, large], key=lambda story: story.sort_key) == [large, unset]
