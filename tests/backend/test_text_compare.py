from __future__ import annotations

from lingodrill.text_compare import (
    compare_texts,
    extract_vocabulary_words,
    levenshtein_distance,
    normalize_text,
    score_dictation,
    string_similarity,
)


def test_score_dictation_counts_position_wise_matches() -> None:
    result = score_dictation("The cat sat", "the cat")

    assert result.accuracy == 67
    assert result.missing_words == ["sat"]
    assert result.extra_words == []
    assert result.differences == ["Missing words: sat"]


def test_score_dictation_ignores_case_and_punctuation() -> None:
    result = score_dictation("¿Dónde está la biblioteca?", "donde está la biblioteca")

    # "dónde" と "donde" はアクセントが違うので 1 語だけ不一致
    assert result.accuracy == 75
    assert result.missing_words == ["dónde"]
    assert result.extra_words == ["donde"]


def test_score_dictation_perfect_and_empty_reference() -> None:
    assert score_dictation("Hola, mundo!", "hola mundo").accuracy == 100
    assert score_dictation("", "anything").accuracy == 0


def test_shifted_words_lose_positional_credit() -> None:
    result = score_dictation("one two three four", "two three four")

    assert result.accuracy == 0
    assert result.missing_words == ["one"]


def test_normalize_text_unifies_quotes_and_dashes() -> None:
    assert normalize_text("  It’s  a “test” — ok. ") == "it's a \"test\" - ok"


def test_levenshtein_and_similarity() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert string_similarity("hello world", "hello world") == 1.0
    assert string_similarity("", "hello") == 0.0
    assert 0.0 < string_similarity("hello world", "hello there") < 1.0


def test_compare_texts_reports_word_differences() -> None:
    exact = compare_texts("I like apples.", "i like apples")
    assert exact.accuracy == 100

    partial = compare_texts("I like green apples", "I like red apples")
    assert partial.accuracy < 100
    assert partial.missing_words == ["green"]
    assert partial.extra_words == ["red"]


def test_extract_vocabulary_words_filters_short_and_duplicate_words() -> None:
    words = extract_vocabulary_words("Me gusta el café, y el café me gusta mucho!")

    assert words == ["gusta", "café", "mucho"]
