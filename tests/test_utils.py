import os
import re

from imageshelf.utils import (
    generate_image_id,
    generate_storage_filename,
    parse_tags_field,
    read_image_properties,
)

from conftest import png_bytes


def test_parse_tags_field_splits_and_keeps_duplicates():
    assert parse_tags_field("a, b ,a") == ["a", "b", "a"]


def test_parse_tags_field_shapes():
    assert parse_tags_field(["x", " y "]) == ["x", " y "]
    assert parse_tags_field(" , ,") == []
    assert parse_tags_field("") == []
    assert parse_tags_field(None) == []
    assert parse_tags_field(42) == []
    assert parse_tags_field({"tags": "a"}) == []


def test_storage_filename_keeps_extension():
    name = generate_storage_filename("Holiday Photo.JPG")
    assert re.fullmatch(r"\d{13}-[0-9a-f]{8}\.JPG", name)
    assert generate_storage_filename("noext").count(".") == 0


def test_identities_are_unique():
    assert len({generate_image_id() for _ in range(200)}) == 200
    assert len({generate_storage_filename("a.png") for _ in range(200)}) == 200


def test_read_image_properties(tmp_path):
    image_path = tmp_path / "tiny.png"
    image_path.write_bytes(png_bytes(size=(4, 3)))
    other_path = tmp_path / "notes.txt"
    other_path.write_text("not an image")

    props = read_image_properties(str(image_path))
    assert (props["width"], props["height"], props["format"]) == (4, 3, "PNG")
    assert props["size_bytes"] == os.path.getsize(image_path)
    assert read_image_properties(str(other_path)) == {"size_bytes": 12}
