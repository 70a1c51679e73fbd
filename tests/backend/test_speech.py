from __future__ import annotations

import pytest

from lingodrill.speech import DEFAULT_VOICE, split_for_speech, voice_for_language


def test_short_text_is_a_single_chunk() -> None:
    assert split_for_speech("Hola. ¿Qué tal?") == ["Hola. ¿Qué tal?"]


def test_sentences_are_packed_up_to_the_limit() -> None:
    text = "One two. Three four. Five six."

    assert split_for_speech(text, max_chars=20) == ["One two. Three four.", "Five six."]


def test_long_sentence_is_split_on_whitespace() -> None:
    chunks = split_for_speech("alpha beta gamma delta", max_chars=11)

    assert chunks == ["alpha beta", "gamma delta"]
    assert all(len(c) <= 11 for c in chunks)


def test_overlong_word_is_cut_hard() -> None:
    assert split_for_speech("abcdefghij", max_chars=4) == ["abcd", "efgh", "ij"]


def test_every_chunk_respects_the_default_limit() -> None:
    text = " ".join(["Esta es una frase de prueba bastante larga."] * 40)
    chunks = split_for_speech(text)

    assert len(chunks) > 1
    assert all(len(c) <= 300 for c in chunks)
    assert " ".join(chunks) == text


def test_blank_text_and_invalid_limit() -> None:
    assert split_for_speech("   ") == []
    with pytest.raises(ValueError):
        split_for_speech("hello", max_chars=0)


def test_voice_for_language_falls_back_to_default() -> None:
    assert voice_for_language("French") == "echo"
    assert voice_for_language("klingon") == DEFAULT_VOICE
    assert voice_for_language(None) == DEFAULT_VOICE
