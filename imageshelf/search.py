"""Keyword and tag filtering over image records. Linear scan, store order preserved."""
from typing import Iterable, List, Optional, Sequence, Union

from .store import ImageRecord

MODE_AND = "and"
MODE_OR = "or"


def normalize_mode(mode: Optional[str]) -> str:
    # Only the literal "and" selects AND; anything else, typos and "AND" included, is OR.
    return MODE_AND if mode == MODE_AND else MODE_OR


def parse_tag_filter(value: Union[str, Sequence[str], None]) -> List[str]:
    """Splits a comma-separated filter into lower-cased, trimmed, non-empty terms."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(',')
    else:
        parts = [p for item in value for p in str(item).split(',')]
    return [p.strip().lower() for p in parts if p.strip()]


def matches_tags(record: ImageRecord, terms: Sequence[str], mode: str = MODE_OR) -> bool:
    if not terms:
        return True
    image_tags = {t.lower() for t in record.tags}
    if normalize_mode(mode) == MODE_AND:
        return all(t in image_tags for t in terms)
    return any(t in image_tags for t in terms)


def matches_keyword(record: ImageRecord, keyword: str) -> bool:
    if not keyword:
        return True
    return (
        keyword in record.filename.lower()
        or keyword in record.original_name.lower()
        or any(keyword in t.lower() for t in record.tags)
    )


def search(
    images: Iterable[ImageRecord],
    keyword: Optional[str] = None,
    tags: Union[str, Sequence[str], None] = None,
    mode: Optional[str] = MODE_OR,
) -> List[ImageRecord]:
    """
    Returns the records passing both the tag predicate and the keyword predicate.

    Tag terms and stored tags are compared lower-cased. With ``mode="and"``
    every term must be present, otherwise any one term is enough; an empty
    filter passes everything. A non-empty keyword must be a substring of the
    storage filename, the original filename or one of the tags.
    """
    terms = parse_tag_filter(tags)
    mode = normalize_mode(mode)
    needle = keyword.strip().lower() if isinstance(keyword, str) else ""
    return [
        record for record in images
        if matches_tags(record, terms, mode) and matches_keyword(record, needle)
    ]
