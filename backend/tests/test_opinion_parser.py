import pytest

from evalcouncil.exceptions import OpinionParseError
from evalcouncil.inference.opinion_parser import anps_category, anps_from_score, parse_opinion
from evalcouncil.inference.prompts import AX_FACTORS, build_subject_description


def test_parses_fenced_json():
    raw = '```json\n{"axScore": 81, "anps": 62, "recommendations": ["Add alt text"]}\n```'

    opinion = parse_opinion(raw)

    assert (opinion.ax_score, opinion.anps) == (81, 62)
    assert opinion.recommendations == ["Add alt text"]
    assert opinion.factors == []


def test_parses_json_wrapped_in_prose():
    raw = 'Here is my assessment:\n{"axScore": 64.5, "factors": [{"name": "Speed", "score": 70.4}]}\nThanks!'

    opinion = parse_opinion(raw)

    assert opinion.ax_score == 65
    assert opinion.factors[0].score == 70
    assert opinion.anps == anps_from_score(65)


@pytest.mark.parametrize(
    "score,expected",
    [(100, 100), (75, 50), (74, 47), (50, -10), (49, -13), (0, -100)],
)
def test_anps_bands(score, expected):
    assert anps_from_score(score) == expected


def test_anps_categories():
    assert anps_category(50) == "Promoter"
    assert anps_category(-10) == "Passive"
    assert anps_category(-11) == "Detractor"


@pytest.mark.parametrize(
    "raw",
    [
        "no json here",
        "{not valid json}",
        '{"anps": 10}',
        '{"axScore": "high"}',
        '{"axScore": 140}',
        '{"axScore": 50, "factors": "fast"}',
        '{"axScore": 50, "factors": [{"name": "Speed", "score": 50, "status": "amazing"}]}',
    ],
)
def test_bad_shapes_raise(raw):
    with pytest.raises(OpinionParseError):
        parse_opinion(raw)


def test_subject_description_mentions_snapshot_and_factors():
    text = build_subject_description(
        "https://example.com/widget",
        {"productName": "Widget", "description": "A widget", "keyFeatures": ["cheap", "fast"]},
    )

    assert "https://example.com/widget" in text
    assert "Widget" in text
    for factor in AX_FACTORS:
        assert factor in text


def test_subject_description_without_snapshot():
    assert "https://example.com" in build_subject_description("https://example.com", None)
