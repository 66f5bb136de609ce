"""Tests for AnswerSynthesizer and prompt assembly."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from quarry.errors import SynthesisError
from quarry.rag.synthesizer import PASSAGE_SEPARATOR, AnswerSynthesizer, build_prompt


def test_build_prompt_layout():
    prompt = build_prompt("What is the sun?", ["The sun is a star.", "Stars are hot."])
    assert prompt == (
        "Using the following context, answer the question.\n\n"
        "Context:\nThe sun is a star.\n---\nStars are hot.\n\n"
        "Question: What is the sun?\n\nAnswer:"
    )


def test_build_prompt_keeps_passage_order():
    prompt = build_prompt("q", ["third", "first", "second"])
    assert "third" + PASSAGE_SEPARATOR + "first" + PASSAGE_SEPARATOR + "second" in prompt


def test_build_prompt_no_passages():
    prompt = build_prompt("Anything?", [])
    assert "Context:\n\n\nQuestion: Anything?" in prompt


def test_synthesize_calls_model_with_single_user_message():
    complete_fn = MagicMock(return_value="  A star.  ")
    synth = AnswerSynthesizer("openai/gpt-4o-mini", max_tokens=200, temperature=0.2, complete_fn=complete_fn)
    assert synth.synthesize("What is the sun?", ["The sun is a star."]) == "A star."

    model, messages = complete_fn.call_args.args
    assert model == "openai/gpt-4o-mini"
    assert messages == [{"role": "user", "content": build_prompt("What is the sun?", ["The sun is a star."])}]
    assert complete_fn.call_args.kwargs == {"max_tokens": 200, "temperature": 0.2}


def test_synthesize_with_no_passages_still_calls_model():
    complete_fn = MagicMock(return_value="I don't know.")
    assert AnswerSynthesizer("m", complete_fn=complete_fn).synthesize("q", []) == "I don't know."
    complete_fn.assert_called_once()


def test_model_failure_becomes_synthesis_error():
    complete_fn = MagicMock(side_effect=RuntimeError("quota exceeded"))
    with pytest.raises(SynthesisError, match="quota exceeded"):
        AnswerSynthesizer("openai/gpt-4o-mini", complete_fn=complete_fn).synthesize("q", ["p"])
    complete_fn.assert_called_once()


def test_empty_answer_is_synthesis_error():
    complete_fn = MagicMock(return_value="   ")
    with pytest.raises(SynthesisError, match="empty answer"):
        AnswerSynthesizer("openai/gpt-4o-mini", complete_fn=complete_fn).synthesize("q", ["p"])
