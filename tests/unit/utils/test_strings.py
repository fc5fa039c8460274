import pytest

from stackdeploy.utils.strings import (
    parse_key_value_pairs,
    sha256_hex,
    short_uid,
    to_bytes,
)


def test_to_bytes():
    assert to_bytes("stack") == b"stack"
    assert to_bytes(b"stack") == b"stack"


def test_sha256_hex():
    expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert sha256_hex("") == expected
    assert sha256_hex(b"") == expected
    assert sha256_hex("Resources: {}") == sha256_hex(b"Resources: {}")


def test_short_uid():
    assert len(short_uid()) == 8
    assert short_uid() != short_uid()


class TestParseKeyValuePairs:
    def test_parse(self):
        assert parse_key_value_pairs(["ImageTag=v2", "Count=3"]) == {"ImageTag": "v2", "Count": "3"}

    def test_value_may_contain_separator(self):
        assert parse_key_value_pairs(["Query=a=b"]) == {"Query": "a=b"}

    def test_empty_value(self):
        assert parse_key_value_pairs(["Suffix="]) == {"Suffix": ""}

    def test_none(self):
        assert parse_key_value_pairs(None) == {}

    @pytest.mark.parametrize("pair", ["ImageTag", "=v2", " =v2"])
    def test_invalid(self, pair):
        with pytest.raises(ValueError, match="Invalid key/value pair"):
            parse_key_value_pairs([pair])
