from __future__ import annotations

import pytest

from billbot.services.prompt_store import prompt_keys, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "chat.system_prompt",
        today="2026-02-21",
        max_iterations=20,
    )
    assert "2026-02-21" in prompt
    assert "20" in prompt


def test_final_answer_prompt_mentions_reason():
    prompt = render_prompt("chat.final_answer_prompt", reason="no_new_results", iterations=3, result_count=2)
    assert "no_new_results" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="today"):
        render_prompt("chat.system_prompt", max_iterations=20)


def test_catalog_keys():
    assert prompt_keys() == [
        "chat.final_answer_prompt",
        "chat.search_complete_message",
        "chat.system_prompt",
    ]
