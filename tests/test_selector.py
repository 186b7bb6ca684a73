import pytest

from captcha_ocr.ocr.selector import filter_symbols, select_candidate
from captcha_ocr.pipeline.schemas import BoundingBox, RecognitionResult, SymbolCandidate, WordCandidate


def _sym(char, conf, left, height=40, width=20):
    return SymbolCandidate(char=char, confidence=conf, bbox=BoundingBox(left, 10, left + width, 10 + height))


def _word_symbols(text, conf=90):
    return [_sym(ch, conf, 30 * (i + 1)) for i, ch in enumerate(text)]


def test_full_text_is_stripped_to_letters():
    result = RecognitionResult(full_text="AB1 c-D", full_confidence=70)
    candidate = select_candidate(result)
    assert candidate.text == "ABD"
    assert candidate.confidence == 70


def test_confident_word_replaces_full_text():
    result = RecognitionResult(
        full_text="AB CDEFG",
        full_confidence=40,
        words=[WordCandidate("AB", 99), WordCandidate("CDEFG", 80)],
    )
    assert select_candidate(result).text == "CDEFG"


def test_weaker_word_does_not_replace_full_text():
    result = RecognitionResult(full_text="ABCD", full_confidence=70, words=[WordCandidate("WXYZ", 60)])
    assert select_candidate(result).text == "ABCD"


@pytest.mark.parametrize("noise_conf", [5, 11])
def test_leading_c_is_dropped(noise_conf):
    symbols = [_sym("C", noise_conf, 0)] + _word_symbols("ATLK")
    result = RecognitionResult(full_text="CATLK", full_confidence=60, symbols=symbols)
    candidate = select_candidate(result)
    assert candidate.text == "ATLK"
    assert candidate.confidence == 90


def test_confident_leading_c_is_kept():
    symbols = [_sym("C", 80, 0)] + _word_symbols("ATLK", conf=80)
    assert "".join(s.char for s in filter_symbols(symbols)) == "CATLK"


def test_short_glyphs_are_filtered_by_median_height():
    symbols = _word_symbols("ATLK") + [_sym("I", 95, 75, height=10)]
    kept = filter_symbols(symbols)
    assert "I" not in [s.char for s in kept]
    result = RecognitionResult(full_text="ATILK", full_confidence=50, symbols=symbols)
    assert select_candidate(result).text == "ATLK"


def test_height_filter_disabled_when_median_is_zero():
    symbols = [_sym(ch, 50, 10 * i, height=0) for i, ch in enumerate("WXYZ")]
    assert len(filter_symbols(symbols)) == 4


def test_symbols_are_ordered_left_to_right():
    symbols = [_sym("K", 90, 120), _sym("A", 90, 0), _sym("L", 90, 80), _sym("T", 90, 40)]
    result = RecognitionResult(full_text="", full_confidence=0, symbols=symbols)
    assert select_candidate(result).text == "ATLK"


def test_non_letter_and_multi_char_symbols_are_ignored():
    symbols = _word_symbols("ATLK") + [_sym("7", 99, 200), _sym("QU", 99, 220), _sym("a", 99, 240)]
    assert [s.char for s in filter_symbols(symbols)] == list("ATLK")


def test_symbol_reading_needs_a_better_score():
    # Baseline ABCD scores 85 + 10; ABCDE scores 80 + 6.
    result = RecognitionResult(full_text="ABCD", full_confidence=85, symbols=_word_symbols("ABCDE", conf=80))
    assert select_candidate(result).text == "ABCD"


def test_symbol_reading_outside_plausible_length_is_ignored():
    result = RecognitionResult(full_text="ABCD", full_confidence=20, symbols=_word_symbols("AB", conf=99))
    assert select_candidate(result).text == "ABCD"


def test_overlong_full_text_is_discarded():
    result = RecognitionResult(full_text="ABCDEFGHIJKLMN", full_confidence=90)
    candidate = select_candidate(result)
    assert candidate.text == ""
    assert candidate.confidence == 0
