import pytest

from bookfinder.book import DEFAULT_AUTHOR, DEFAULT_DESCRIPTION, DEFAULT_TITLE, BookRecord
from bookfinder.catalog import (
    extract_isbn,
    force_https,
    normalize,
    normalize_email,
    normalize_many,
    resolve_thumbnail,
)


def _volume(**info):
    return {"id": "vol-1", "volumeInfo": info}


def test_normalize_full_volume():
    record = normalize(_volume(
        title="Dune",
        authors=["Frank Herbert"],
        description="Spice.",
        publishedDate="1965",
        pageCount=412,
        imageLinks={"thumbnail": "http://books.google.com/dune.jpg"},
        industryIdentifiers=[{"type": "ISBN_13", "identifier": "9780441013593"}],
    ))
    assert record.external_id == "vol-1"
    assert record.title == "Dune"
    assert record.authors == ("Frank Herbert",)
    assert record.description == "Spice."
    assert record.published_date == "1965"
    assert record.page_count == 412
    assert record.thumbnail == "https://books.google.com/dune.jpg"
    assert record.isbn == "9780441013593"


def test_normalize_empty_volume_uses_defaults():
    record = normalize({"id": "x"})
    assert record.title == DEFAULT_TITLE
    assert record.authors == (DEFAULT_AUTHOR,)
    assert record.description == DEFAULT_DESCRIPTION
    assert record.thumbnail is None
    assert record.page_count == 0
    assert record.isbn is None


@pytest.mark.parametrize("raw", [None, 42, "a string", [], {"volumeInfo": "nope"}, {"volumeInfo": {"authors": 7}}])
def test_normalize_never_raises(raw):
    record = normalize(raw)
    assert record.title == DEFAULT_TITLE
    assert record.authors == (DEFAULT_AUTHOR,)


def test_empty_author_list_falls_back():
    assert normalize(_volume(authors=[])).authors == (DEFAULT_AUTHOR,)
    assert normalize(_volume(authors=["", "  "])).authors == (DEFAULT_AUTHOR,)


def test_record_with_single_author_string():
    assert BookRecord(external_id="x", authors="Frank Herbert").authors == ("Frank Herbert",)
    assert BookRecord.from_dict({"external_id": "x", "authors": "Jane Austen"}).authors == ("Jane Austen",)


def test_record_drops_blank_author_names():
    assert BookRecord(external_id="x", authors=[" Frank Herbert ", "  "]).authors == ("Frank Herbert",)
    assert BookRecord(external_id="x", authors=["   "]).authors == (DEFAULT_AUTHOR,)


def test_blank_title_falls_back():
    assert normalize(_volume(title="   ")).title == DEFAULT_TITLE


def test_bad_page_count_is_zero():
    assert normalize(_volume(pageCount="many")).page_count == 0
    assert normalize(_volume(pageCount=-3)).page_count == 0


def test_thumbnail_priority():
    info = {"imageLinks": {"large": "https://x/large", "smallThumbnail": "https://x/small"}}
    assert resolve_thumbnail(info) == "https://x/small"

    info["imageLinks"]["thumbnail"] = "https://x/thumb"
    assert resolve_thumbnail(info) == "https://x/thumb"


def test_thumbnail_falls_back_to_open_library_cover():
    info = {"industryIdentifiers": [{"type": "ISBN_10", "identifier": "0441013597"}]}
    assert resolve_thumbnail(info) == "https://covers.openlibrary.org/b/isbn/0441013597-L.jpg"


def test_no_image_and_no_isbn_means_no_thumbnail():
    assert resolve_thumbnail({"imageLinks": {}}) is None


def test_isbn_13_preferred_over_isbn_10():
    info = {"industryIdentifiers": [
        {"type": "ISBN_10", "identifier": "0441013597"},
        {"type": "OTHER", "identifier": "OCLC:1"},
        {"type": "ISBN_13", "identifier": "9780441013593"},
    ]}
    assert extract_isbn(info) == "9780441013593"


def test_force_https_leaves_https_alone():
    assert force_https("http://a/b") == "https://a/b"
    assert force_https("https://a/b") == "https://a/b"


def test_normalize_many():
    assert normalize_many(None) == []
    assert normalize_many({"id": "x"}) == []
    records = normalize_many([_volume(title="A"), {"id": "b"}])
    assert [r.title for r in records] == ["A", DEFAULT_TITLE]


@pytest.mark.parametrize("email", ["  Alice@Example.COM ", "alice@example.com", "ALICE@EXAMPLE.COM"])
def test_normalize_email_is_idempotent(email):
    once = normalize_email(email)
    assert once == "alice@example.com"
    assert normalize_email(once) == once
