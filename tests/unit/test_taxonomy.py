"""Tests for the category and tag taxonomy."""

import pytest

from servers.event_sync.taxonomy import (
    ALL_TAGS,
    CATEGORIES,
    DEFAULT_CATEGORY,
    TAG_ALIASES,
    TAG_TAXONOMY,
    extract_keyword_tags,
    infer_category,
    normalize_tag,
    normalize_tags,
    tags_closed_over,
)


class TestTaxonomyShape:
    """Sanity checks on the taxonomy tables."""

    def test_default_category_exists(self):
        assert DEFAULT_CATEGORY in CATEGORIES

    def test_every_alias_points_at_a_canonical_tag(self):
        assert set(TAG_ALIASES.values()) <= ALL_TAGS

    def test_tags_are_already_normalized(self):
        for tags in TAG_TAXONOMY.values():
            for tag in tags:
                assert normalize_tag(tag) == tag


class TestNormalizeTag:
    """Tests for normalize_tag."""

    @pytest.mark.parametrize("raw,expected", [
        ("Rock", "rock"),
        ("Hip-Hop/Rap", "hip-hop"),
        ("R&B", "r-and-b"),
        ("Dance/Electronic", "edm"),
        ("Singer/Songwriter", "singer-songwriter"),
        ("stand up", "stand-up"),
        ("  Jazz  ", "jazz"),
    ])
    def test_maps_source_spellings(self, raw, expected):
        assert normalize_tag(raw) == expected

    @pytest.mark.parametrize("raw", ["", "Undefined", "Other", "Miscellaneous"])
    def test_unmapped_dropped(self, raw):
        assert normalize_tag(raw) is None


class TestNormalizeTags:
    """Tests for normalize_tags."""

    def test_filters_to_category(self):
        """Tags that belong to another category never leak in."""
        assert normalize_tags(["Rock", "Stand-Up", "Jazz"], "concerts") == ["rock", "jazz"]

    def test_dedupes_preserving_order(self):
        assert normalize_tags(["Jazz", "Rock", "Smooth Jazz"], "concerts") == ["jazz", "rock"]

    def test_unknown_category_gives_nothing(self):
        assert normalize_tags(["Rock"], "opera-houses") == []


class TestInferCategory:
    """Tests for infer_category."""

    def test_comedy_wins_over_concert_words(self):
        assert infer_category("Stand-up comedy show") == "comedy"

    def test_word_boundaries(self):
        """'display' must not read as 'play'."""
        assert infer_category("Window display unveiling") == DEFAULT_CATEGORY

    def test_uses_description(self):
        assert infer_category("Saturday Market", "Local makers and farmers") == "community"

    def test_none_texts_ignored(self):
        assert infer_category(None, None) == DEFAULT_CATEGORY

    def test_custom_default(self):
        assert infer_category("Untitled", default="arts") == "arts"


class TestExtractKeywordTags:
    def test_finds_genres(self):
        tags = extract_keyword_tags("Jazz & Blues Night", None)
        assert "jazz" in tags
        assert "blues" in tags

    def test_no_partial_words(self):
        """'popcorn' does not mean pop music."""
        assert "pop" not in extract_keyword_tags("Free popcorn for everyone")


class TestTagsClosedOver:
    def test_closed(self):
        assert tags_closed_over(["rock", "jazz"], "concerts")

    def test_foreign_tag(self):
        assert not tags_closed_over(["rock", "improv"], "concerts")

    def test_empty_is_closed(self):
        assert tags_closed_over([], "sports")

    def test_unknown_category(self):
        assert not tags_closed_over([], "unknown")
