import httpx
import pytest

from shelf_rec import google_books, utils


VOLUME = {
    "id": "vol-1",
    "volumeInfo": {
        "title": "The Name of the Wind",
        "authors": ["Patrick Rothfuss"],
        "publisher": "DAW",
        "publishedDate": "2007-03-27",
        "pageCount": 662,
        "categories": ["Fiction"],
        "imageLinks": {"thumbnail": "http://books.google.com/cover.jpg"},
        "industryIdentifiers": [
            {"type": "ISBN_10", "identifier": "0756404746"},
            {"type": "ISBN_13", "identifier": "9780756404741"},
        ],
    },
}


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda _: None)


def _client(handler, **kwargs):
    return google_books.GoogleBooksClient(transport=httpx.MockTransport(handler), **kwargs)


def test_map_volume_prefers_isbn13_and_https_cover():
    item = google_books.map_volume(VOLUME)

    assert item.id is None
    assert item.title == "The Name of the Wind"
    assert item.author == "Patrick Rothfuss"
    assert item.isbn == "9780756404741"
    assert item.cover_url == "https://books.google.com/cover.jpg"
    assert item.published_year == 2007
    assert item.total_pages == 662
    assert item.genres == ["Fiction"]


def test_map_volume_handles_sparse_payload():
    item = google_books.map_volume({"id": "x", "volumeInfo": {"title": "Bare"}})

    assert item.title == "Bare"
    assert item.author is None
    assert item.genres == []
    assert item.tags == []
    assert item.isbn is None


def test_search_by_feature_queries_subject():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"totalItems": 1, "items": [VOLUME]})

    with _client(handler, api_key="k") as client:
        items = client.search_by_feature("fantasy", 8)

    assert seen["path"] == "/books/v1/volumes"
    assert seen["params"]["q"] == "subject:fantasy"
    assert seen["params"]["maxResults"] == "8"
    assert seen["params"]["printType"] == "books"
    assert seen["params"]["key"] == "k"
    assert [i.title for i in items] == ["The Name of the Wind"]


def test_search_without_items_returns_empty_list():
    def handler(request):
        return httpx.Response(200, json={"totalItems": 0})

    with _client(handler, api_key=None) as client:
        assert client.search_by_feature("obscure", 8) == []


def test_search_raises_on_http_error_without_retry():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(503, json={"error": "unavailable"})

    with _client(handler, max_retries=3) as client:
        with pytest.raises(httpx.HTTPStatusError):
            client.search_by_feature("fantasy", 8)

    assert calls["n"] == 1


def test_search_retries_timeouts_then_raises():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        raise httpx.ReadTimeout("slow", request=request)

    with _client(handler, max_retries=2) as client:
        with pytest.raises(httpx.ReadTimeout):
            client.search_by_feature("fantasy", 8)

    assert calls["n"] == 2


def test_search_recovers_after_transient_timeout():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectTimeout("slow", request=request)
        return httpx.Response(200, json={"items": [VOLUME]})

    with _client(handler, max_retries=2) as client:
        items = client.search_by_feature("fantasy", 8)

    assert len(items) == 1


def test_fetch_metadata_by_title():
    def handler(request):
        assert request.url.params["q"] == "intitle:The Name of the Wind"
        return httpx.Response(200, json={"totalItems": 1, "items": [VOLUME]})

    with _client(handler) as client:
        item = client.fetch_metadata("The Name of the Wind")

    assert item.isbn == "9780756404741"


def test_fetch_metadata_falls_back_to_open_library_for_isbn():
    def handler(request):
        if request.url.host == "www.googleapis.com":
            assert request.url.params["q"] == "isbn:978-83-7578-063-5"
            return httpx.Response(200, json={"totalItems": 0})
        assert request.url.host == "openlibrary.org"
        assert request.url.params["bibkeys"] == "ISBN:9788375780635"
        return httpx.Response(200, json={
            "ISBN:9788375780635": {
                "title": "Ostatnie życzenie",
                "authors": [{"name": "Andrzej Sapkowski"}],
                "publishers": [{"name": "SuperNowa"}],
                "publish_date": "June 2014",
                "number_of_pages": 332,
                "cover": {"medium": "https://covers.openlibrary.org/m.jpg"},
                "subjects": [{"name": "Fantasy"}, "Witchers"],
                "notes": {"type": "text", "value": "First collection."},
            }
        })

    with _client(handler) as client:
        item = client.fetch_metadata("978-83-7578-063-5")

    assert item.title == "Ostatnie życzenie"
    assert item.author == "Andrzej Sapkowski"
    assert item.publisher == "SuperNowa"
    assert item.published_year == 2014
    assert item.genres == ["Fantasy", "Witchers"]
    assert item.isbn == "9788375780635"
    assert item.description == "First collection."
    assert item.cover_url == "https://covers.openlibrary.org/m.jpg"


def test_fetch_metadata_returns_none_when_everything_fails():
    def handler(request):
        return httpx.Response(500)

    with _client(handler) as client:
        assert client.fetch_metadata("9780756404741") is None
        assert client.fetch_metadata("Unknown Title") is None


def test_isbn_helpers():
    assert utils.looks_like_isbn("978-0-7564-0474-1")
    assert utils.looks_like_isbn("0756404746")
    assert not utils.looks_like_isbn("The Hobbit")
    assert not utils.looks_like_isbn("12345")
    assert utils.normalize_isbn("978-0 7564") == "97807564"
    assert utils.normalize_isbn("") is None


def test_map_volume_coerces_wrong_json_types():
    item = google_books.map_volume({
        "volumeInfo": {
            "title": 12345,
            "authors": "Solo Author",
            "categories": "Fiction",
            "pageCount": "many",
            "imageLinks": "not-a-dict",
            "industryIdentifiers": {"type": "ISBN_13"},
        }
    })

    assert item.title == "12345"
    assert item.author == "Solo Author"
    assert item.genres == ["Fiction"]
    assert item.total_pages is None
    assert item.cover_url is None
    assert item.isbn is None


def test_non_object_response_is_a_value_error():
    def handler(request):
        return httpx.Response(200, json=["not", "an", "object"])

    with _client(handler) as client:
        with pytest.raises(ValueError):
            client.search_by_feature("fantasy", 8)
        assert client.fetch_metadata("Some Title") is None


def test_retry_log_names_the_failing_request(caplog):
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectTimeout("slow", request=request)
        return httpx.Response(200, json={"items": []})

    with caplog.at_level("WARNING", logger="shelf_rec.utils"):
        with _client(handler, max_retries=2) as client:
            client.search_by_feature("fantasy", 8)

    assert "GET https://www.googleapis.com/books/v1/volumes" in caplog.text
    assert "(1/2)" in caplog.text
