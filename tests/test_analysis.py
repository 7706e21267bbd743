import pytest

from studychat.analysis import analyze_text, overall_score


def test_empty_text():
    result = analyze_text("")
    assert result.metrics() == [0, 100, 0, 0, 100]
    assert result.overall == 40


def test_repeated_word():
    result = analyze_text("the the the.")
    assert result.metrics() == [0, 100, 67, 50, 100]
    assert result.overall == 63


def test_uneven_sentences():
    result = analyze_text("Hello world. Hi.")
    assert result.metrics() == [20, 89, 0, 0, 67]
    assert result.overall == 36


def test_quotes_are_ignored():
    assert analyze_text('"the" the the.') == analyze_text("the the the.")


def test_long_words_cap_perplexity():
    result = analyze_text("Internationalization notwithstanding, characteristically.")
    assert result.perplexity == 100


@pytest.mark.parametrize(
    "metrics, expected",
    [
        ([], 0),
        ([100, 100, 100, 100, 100], 100),
        ([50, 50, 50, 50, 50], 50),
    ],
)
def test_overall_score(metrics, expected):
    assert overall_score(metrics) == expected


def test_metrics_stay_in_range():
    text = "Short. A much longer sentence follows this one here! Why? " * 5
    for value in analyze_text(text).metrics():
        assert 0 <= value <= 100
