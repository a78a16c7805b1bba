from __future__ import annotations

from movie_chat_recommender.core.preferences import (
    RatingRange,
    YearRange,
    detect_movie_titles,
    extract_preferences,
)


def test_defaults_when_nothing_matches() -> None:
    prefs = extract_preferences("hello there", current_year=2025)
    assert prefs.genres == frozenset()
    assert prefs.year_range == YearRange(min=1980, max=2025)
    assert prefs.rating_range == RatingRange(min=6.0, max=10.0)
    assert prefs.movie_titles == frozenset()


def test_recent_years_outrank_explicit_range() -> None:
    prefs = extract_preferences(
        "I want movies from the last 5 years, maybe between 1990 and 1999", current_year=2025
    )
    assert prefs.year_range == YearRange(min=2020, max=2025)


def test_year_rule_categories() -> None:
    assert extract_preferences("between 1990 and 1999", current_year=2025).year_range == YearRange(1990, 1999)
    assert extract_preferences("anything from 2001 to 2010", current_year=2025).year_range == YearRange(2001, 2010)
    assert extract_preferences("anything since 2015", current_year=2025).year_range == YearRange(2015, 2025)
    assert extract_preferences("films before 1995", current_year=2025).year_range == YearRange(1980, 1995)
    assert extract_preferences("movies from 1995", current_year=2025).year_range == YearRange(1995, 2025)
    assert extract_preferences("I enjoy 1970s classics", current_year=2025).year_range == YearRange(1970, 1979)


def test_decade_is_capped_at_current_year() -> None:
    prefs = extract_preferences("something from the 2020s", current_year=2025)
    assert prefs.year_range == YearRange(min=2020, max=2025)


def test_invalid_year_matches_fall_through_to_default() -> None:
    assert extract_preferences("the last 60 years", current_year=2025).year_range == YearRange(1980, 2025)
    assert extract_preferences("from 2010 to 2000", current_year=2025).year_range == YearRange(1980, 2025)
    assert extract_preferences("after 2030", current_year=2025).year_range == YearRange(1980, 2025)


def test_rating_rule_categories() -> None:
    assert extract_preferences("an 8+ rating please").rating_range == RatingRange(8.0, 10.0)
    assert extract_preferences("7.5 or higher").rating_range == RatingRange(7.5, 10.0)
    assert extract_preferences("rated at least 7").rating_range == RatingRange(7.0, 10.0)
    assert extract_preferences("rated between 7 and 9").rating_range == RatingRange(7.0, 9.0)
    assert extract_preferences("rated 5-8").rating_range == RatingRange(5.0, 8.0)
    assert extract_preferences("rated under 5").rating_range == RatingRange(1.0, 5.0)


def test_out_of_range_rating_is_discarded() -> None:
    assert extract_preferences("rated over 20").rating_range == RatingRange(6.0, 10.0)


def test_genres_from_keywords() -> None:
    prefs = extract_preferences("I love scary movies and science fiction", current_year=2025)
    assert prefs.genres == frozenset({"Horror", "Romance", "Sci-Fi"})


def test_titles_keep_original_case() -> None:
    text = "I loved \"The Matrix\" and something like Blade Runner 2049. Also 'Heat' is great, don't you think?"
    assert detect_movie_titles(text) == frozenset({"The Matrix", "Blade Runner 2049", "Heat"})


def test_title_length_bounds() -> None:
    assert detect_movie_titles('"A" and "' + "x" * 101 + '"') == frozenset()


def test_like_requires_capitalised_phrase() -> None:
    assert detect_movie_titles("I would like 10 movies like that") == frozenset()


def test_extraction_is_deterministic() -> None:
    text = "Comedy from the 1990s like Groundhog Day, 7+ rating"
    first = extract_preferences(text, current_year=2025)
    assert first == extract_preferences(text, current_year=2025)
    assert first.to_dict() == {
        "genres": ["Comedy"],
        "yearRange": {"min": 1990, "max": 1999},
        "ratingRange": {"min": 7.0, "max": 10.0},
        "movieTitles": ["Groundhog Day"],
    }
