import pytest

from shared.validators import parse_string_list


class TestParseStringList:
    def test_json_array_string(self):
        assert parse_string_list('["https://a.example","https://b.example"]') == [
            "https://a.example",
            "https://b.example",
        ]

    def test_comma_separated_with_whitespace(self):
        assert parse_string_list(" https://a.example , https://b.example ") == [
            "https://a.example",
            "https://b.example",
        ]

    def test_comma_separated_skips_empty_segments(self):
        assert parse_string_list("https://a.example,,") == ["https://a.example"]

    def test_passthrough_list(self):
        origins = ["https://a.example"]
        assert parse_string_list(origins) == origins

    def test_blank_string_raises_even_when_empty_allowed(self):
        with pytest.raises(ValueError, match="must not be empty"):
            parse_string_list("   ", allow_empty=True)

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError, match="Invalid JSON array"):
            parse_string_list("[not json")

    def test_json_non_string_items_raise(self):
        with pytest.raises(ValueError, match="must be an array of strings"):
            parse_string_list('["https://a.example", 1]')

    def test_empty_results_rejected_by_default(self):
        with pytest.raises(ValueError, match="must not be empty"):
            parse_string_list("[]")
        with pytest.raises(ValueError, match="must not be empty"):
            parse_string_list(",,")
        with pytest.raises(ValueError, match="must not be empty"):
            parse_string_list([])

    def test_empty_results_allowed_when_requested(self):
        assert parse_string_list("[]", allow_empty=True) == []
        assert parse_string_list([], allow_empty=True) == []
