"""
Tests for ranges.py — price ranges, tiling check and query URL encoding.
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from auction_crawler.ranges import PriceRange, Target, build_query_url, check_tiling, tiling_gaps


# ====================================================================
# PriceRange
# ====================================================================

class TestPriceRange:

    def test_bounded_range(self):
        rng = PriceRange(250, 500)
        assert not rng.is_open
        assert rng.width == 250
        assert rng.label == "250-500"
        assert str(rng) == "[250, 500]"

    def test_open_range(self):
        rng = PriceRange(2000)
        assert rng.is_open
        assert rng.width is None
        assert rng.label == "2000-plus"
        assert str(rng) == "[2000, +inf)"

    def test_max_must_exceed_min(self):
        with pytest.raises(ValueError):
            PriceRange(500, 500)
        with pytest.raises(ValueError):
            PriceRange(500, 400)

    def test_negative_min_rejected(self):
        with pytest.raises(ValueError):
            PriceRange(-1, 10)

    def test_query_params_omit_max_for_open_range(self):
        assert PriceRange(10, 20).query_params("lo", "hi") == {"lo": "10", "hi": "20"}
        assert PriceRange(10).query_params("lo", "hi") == {"lo": "10"}

    def test_hashable_and_comparable(self):
        assert PriceRange(1, 2) == PriceRange(1, 2)
        assert len({PriceRange(1, 2), PriceRange(1, 2), PriceRange(2)}) == 2

    def test_to_dict(self):
        assert PriceRange(4000).to_dict() == {'min': 4000, 'max': None}


class TestTarget:

    def test_defaults(self):
        target = Target("HouseA")
        assert target.expected_count == 0
        assert target.to_dict() == {'name': 'HouseA', 'expected_count': 0, 'category': ''}


# ====================================================================
# Tiling
# ====================================================================

class TestTiling:
    """Leaves must cover [base_min, +inf) without gaps or overlaps."""

    def test_valid_tiling_in_any_order(self):
        leaves = [PriceRange(2000), PriceRange(250, 500), PriceRange(500, 2000)]
        assert check_tiling(leaves, 250)
        assert tiling_gaps(leaves, 250) == []

    def test_gap_detected(self):
        leaves = [PriceRange(250, 500), PriceRange(600, 2000), PriceRange(2000)]
        gaps = tiling_gaps(leaves, 250)
        assert len(gaps) == 1
        assert "gap" in gaps[0]

    def test_overlap_detected(self):
        leaves = [PriceRange(250, 600), PriceRange(500, 2000), PriceRange(2000)]
        assert any("overlap" in g for g in tiling_gaps(leaves, 250))

    def test_wrong_start_detected(self):
        assert not check_tiling([PriceRange(300)], 250)

    def test_bounded_last_range_detected(self):
        assert not check_tiling([PriceRange(250, 500)], 250)

    def test_open_range_not_last(self):
        leaves = [PriceRange(250), PriceRange(250, 500)]
        assert not check_tiling(leaves, 250)

    def test_empty(self):
        assert tiling_gaps([], 250) == ["no ranges"]


# ====================================================================
# Query URL
# ====================================================================

class TestBuildQueryUrl:

    def _params(self, url):
        return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}

    def test_bounded_range_params(self):
        url = build_query_url(
            "https://www.invaluable.com/search",
            PriceRange(250, 500),
            fixed_params={"upcoming": "false"},
            target_params={"houseName": "House A & Sons"},
        )
        assert url.startswith("https://www.invaluable.com/search?")
        assert self._params(url) == {
            "upcoming": "false",
            "houseName": "House A & Sons",
            "priceResult[min]": "250",
            "priceResult[max]": "500",
        }

    def test_open_range_has_no_max(self):
        url = build_query_url("https://example.com/search", PriceRange(4000))
        params = self._params(url)
        assert params["priceResult[min]"] == "4000"
        assert "priceResult[max]" not in params

    def test_existing_query_kept_and_stale_max_dropped(self):
        url = build_query_url(
            "https://example.com/search?sort=asc&priceResult%5Bmax%5D=99",
            PriceRange(10),
        )
        params = self._params(url)
        assert params["sort"] == "asc"
        assert "priceResult[max]" not in params

    def test_custom_keys(self):
        url = build_query_url(
            "https://example.com/s", PriceRange(1, 2), min_key="minValue", max_key="maxValue",
        )
        assert self._params(url) == {"minValue": "1", "maxValue": "2"}
