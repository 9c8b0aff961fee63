import pytest

from imageshelf.search import normalize_mode, parse_tag_filter, search

from conftest import make_record


@pytest.fixture
def records():
    return [
        make_record("1", "Sunset.png", ["Red", "sky"], filename="1700000000001-aaaa.png"),
        make_record("2", "kitty.jpg", ["red", "cat"], filename="1700000000002-bbbb.jpg"),
        make_record("3", "dog.gif", ["Dog", "Brown"], filename="1700000000003-cccc.gif"),
        make_record("4", "untagged.webp", [], filename="1700000000004-dddd.webp"),
    ]


def ids(results):
    return [r.id for r in results]


def test_no_parameters_returns_everything_in_order(records):
    assert ids(search(records)) == ["1", "2", "3", "4"]


def test_and_mode_requires_every_tag(records):
    assert ids(search(records, tags=["red", "cat"], mode="and")) == ["2"]


def test_or_mode_accepts_any_tag(records):
    assert ids(search(records, tags=["red", "cat"], mode="or")) == ["1", "2"]


def test_tag_matching_ignores_case(records):
    assert ids(search(records, tags="RED")) == ["1", "2"]
    assert ids(search(records, tags="dog,brown", mode="and")) == ["3"]


def test_csv_filter_is_trimmed(records):
    assert ids(search(records, tags=" sky , , cat ")) == ["1", "2"]


@pytest.mark.parametrize("mode", [None, "", "AND", "andd", "xor"])
def test_anything_but_literal_and_means_or(records, mode):
    assert normalize_mode(mode) == "or"
    assert ids(search(records, tags=["sky", "cat"], mode=mode)) == ["1", "2"]


def test_keyword_matches_original_name(records):
    assert ids(search(records, keyword="sun")) == ["1"]


def test_keyword_matches_storage_filename(records):
    assert ids(search(records, keyword="CCCC")) == ["3"]


def test_keyword_matches_tag_substring(records):
    assert ids(search(records, keyword="  ca ")) == ["2"]


def test_blank_keyword_is_ignored(records):
    assert ids(search(records, keyword="   ")) == ["1", "2", "3", "4"]


def test_keyword_and_tags_must_both_match(records):
    assert ids(search(records, keyword="kitty", tags="red")) == ["2"]
    assert ids(search(records, keyword="kitty", tags="sky")) == []


def test_parse_tag_filter():
    assert parse_tag_filter(None) == []
    assert parse_tag_filter("") == []
    assert parse_tag_filter("A, b,,C ") == ["a", "b", "c"]
    assert parse_tag_filter(["X", "y,z"]) == ["x", "y", "z"]
