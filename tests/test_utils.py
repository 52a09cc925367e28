"""Tests for utility functions."""

from __future__ import annotations

import json
from unittest.mock import patch

from isbn_lookup import LookupCache, cache_key, clamp_int, extract_year, is_valid_isbn, normalize_isbn
from isbn_lookup.utils import CACHE_MAX_AGE_SECONDS, first_year, truncate


class TestNormalizeIsbn:
    """Tests for normalize_isbn function."""

    def test_strips_hyphens(self):
        assert normalize_isbn("978-89-374-6044-9") == "9788937460449"

    def test_strips_spaces_and_prefix(self):
        assert normalize_isbn(" ISBN 89 374 6044 0 ") == "8937460440"

    def test_none(self):
        assert normalize_isbn(None) == ""

    def test_non_string(self):
        assert normalize_isbn(9788937460449) == "9788937460449"

    def test_json_object_is_empty(self):
        assert normalize_isbn({"x": "9788937460449"}) == ""

    def test_list_is_empty(self):
        assert normalize_isbn(["9788937460449"]) == ""

    def test_bool_is_empty(self):
        assert normalize_isbn(True) == ""

    def test_integral_float(self):
        assert normalize_isbn(9788937460449.0) == "9788937460449"

    def test_fractional_float_is_empty(self):
        assert normalize_isbn(978893746044.5) == ""

    def test_only_letters(self):
        assert normalize_isbn("not an isbn") == ""

    def test_drops_isbn10_check_character_x(self):
        # Non-digit characters are removed, including a trailing X
        assert normalize_isbn("0-306-40615-X") == "030640615"

    def test_does_not_validate_length(self):
        assert normalize_isbn("12-34") == "1234"


class TestIsValidIsbn:
    """Tests for is_valid_isbn function."""

    def test_ten_digits(self):
        assert is_valid_isbn("8937460440")

    def test_thirteen_digits(self):
        assert is_valid_isbn("9788937460449")

    def test_eight_digits(self):
        assert not is_valid_isbn("12345678")

    def test_eleven_digits(self):
        assert not is_valid_isbn("12345678901")

    def test_empty(self):
        assert not is_valid_isbn("")

    def test_non_digits(self):
        assert not is_valid_isbn("978893746044X")


class TestClampInt:
    """Tests for clamp_int function."""

    def test_in_range(self):
        assert clamp_int(5, 1, 15, 8) == 5

    def test_above_range(self):
        assert clamp_int(100, 1, 15, 8) == 15

    def test_below_range(self):
        assert clamp_int(0, 1, 15, 8) == 1

    def test_none_uses_default(self):
        assert clamp_int(None, 1, 15, 8) == 8

    def test_string_number(self):
        assert clamp_int("4", 1, 15, 8) == 4

    def test_garbage_uses_default(self):
        assert clamp_int("fast", 1, 15, 8) == 8

    def test_float_is_floored(self):
        assert clamp_int(3.9, 1, 15, 8) == 3

    def test_infinity_uses_default(self):
        assert clamp_int(float("inf"), 1, 15, 8) == 8

    def test_bool_uses_default(self):
        assert clamp_int(True, 1, 15, 8) == 8


class TestExtractYear:
    """Tests for extract_year and first_year."""

    def test_date8(self):
        assert extract_year("20230115") == "2023"

    def test_bare_year(self):
        assert extract_year("1999") == "1999"

    def test_iso_date(self):
        assert extract_year("2021-03-04") == "2021"

    def test_whitespace(self):
        assert extract_year(" 20230115 ") == "2023"

    def test_unrecognized(self):
        assert extract_year("2023.01") == ""

    def test_none(self):
        assert extract_year(None) == ""

    def test_first_year_priority(self):
        doc = {"PUBLISH_PREDATE": "", "REAL_PUBLISH_DATE": "20190505"}
        assert first_year(doc, ("PUBLISH_PREDATE", "REAL_PUBLISH_DATE")) == "2019"

    def test_first_year_prefers_first_field(self):
        doc = {"PUBLISH_PREDATE": "2018", "REAL_PUBLISH_DATE": "20190505"}
        assert first_year(doc, ("PUBLISH_PREDATE", "REAL_PUBLISH_DATE")) == "2018"


class TestSmallHelpers:
    def test_cache_key(self):
        assert cache_key("9788937460449") == "isbn:9788937460449"

    def test_truncate(self):
        assert truncate("abcdef", 3) == "abc"
        assert truncate(None, 3) == ""


class TestLookupCache:
    """Tests for LookupCache."""

    def test_memory_roundtrip(self):
        cache = LookupCache(None)
        cache.set("isbn:1", {"title": "T", "status": "success"})
        assert cache.get("isbn:1") == {"title": "T", "status": "success"}

    def test_missing_key(self):
        assert LookupCache(None).get("isbn:missing") is None

    def test_returns_copy(self):
        cache = LookupCache(None)
        cache.set("k", {"title": "T"})
        value = cache.get("k")
        value["title"] = "changed"
        assert cache.get("k") == {"title": "T"}

    def test_default_max_age_is_thirty_days(self):
        assert LookupCache(None).default_max_age == CACHE_MAX_AGE_SECONDS == 2592000

    def test_entry_expires(self):
        cache = LookupCache(None)
        with patch("isbn_lookup.utils.time.time", return_value=1000.0):
            cache.set("k", {"title": "T"}, max_age=60)
        with patch("isbn_lookup.utils.time.time", return_value=1059.0):
            assert cache.get("k") == {"title": "T"}
        with patch("isbn_lookup.utils.time.time", return_value=1061.0):
            assert cache.get("k") is None

    def test_purge_expired(self):
        cache = LookupCache(None)
        with patch("isbn_lookup.utils.time.time", return_value=1000.0):
            cache.set("old", {"title": "A"}, max_age=10)
            cache.set("new", {"title": "B"}, max_age=1000)
        with patch("isbn_lookup.utils.time.time", return_value=1100.0):
            assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_persists_to_disk(self, tmp_path):
        path = str(tmp_path / "cache.json")
        cache = LookupCache(path)
        cache.set("isbn:1", {"title": "데미안"})
        assert cache.flush()
        reloaded = LookupCache(path)
        assert reloaded.get("isbn:1") == {"title": "데미안"}
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        assert raw["isbn:1"]["max_age"] == CACHE_MAX_AGE_SECONDS

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json", encoding="utf-8")
        cache = LookupCache(str(path))
        assert len(cache) == 0
        cache.set("k", {"title": "T"})
        cache.flush()
        assert LookupCache(str(path)).get("k") == {"title": "T"}

    def test_set_does_not_write_until_flush(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = LookupCache(str(path))
        cache.set("k", {"title": "T"})
        assert not path.exists()
        assert cache.flush()
        assert path.exists()
        assert not cache.flush()

    def test_flush_writes_once_for_many_entries(self, tmp_path):
        cache = LookupCache(str(tmp_path / "cache.json"))
        with patch.object(LookupCache, "_save", autospec=True) as save:
            for i in range(50):
                cache.set(f"isbn:{i}", {"title": str(i)})
            cache.flush()
        assert save.call_count == 1

    def test_flush_drops_expired_entries(self, tmp_path):
        path = str(tmp_path / "cache.json")
        cache = LookupCache(path)
        with patch("isbn_lookup.utils.time.time", return_value=1000.0):
            cache.set("old", {"title": "A"}, max_age=10)
            cache.set("new", {"title": "B"}, max_age=1000)
        with patch("isbn_lookup.utils.time.time", return_value=1100.0):
            cache.flush()
        with open(path, encoding="utf-8") as f:
            assert list(json.load(f)) == ["new"]

    def test_flush_without_path(self):
        cache = LookupCache(None)
        cache.set("k", {"title": "T"})
        assert not cache.flush()
        assert cache.get("k") == {"title": "T"}

    def test_non_object_file_starts_empty(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("[]", encoding="utf-8")
        cache = LookupCache(str(path))
        assert len(cache) == 0
        assert cache.get("isbn:1") is None

    def test_malformed_entries_are_absent(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(
            json.dumps(
                {
                    "no-value": {"timestamp": 9e18},
                    "bad-timestamp": {"value": {"title": "T"}, "timestamp": "yesterday"},
                    "bad-max-age": {"value": {"title": "T"}, "timestamp": 0, "max_age": None},
                    "not-a-dict": ["value"],
                    "value-not-a-dict": {"value": "T", "timestamp": 0},
                }
            ),
            encoding="utf-8",
        )
        cache = LookupCache(str(path))
        for key in ("no-value", "bad-timestamp", "bad-max-age", "not-a-dict", "value-not-a-dict"):
            assert cache.get(key) is None
        assert cache.purge_expired() == 5
