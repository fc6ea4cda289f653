import httpx
import pytest
from fastapi.testclient import TestClient

from bookfinder.api import create_app
from bookfinder.notifications import NotificationChannel
from bookfinder.services.cache_manager import CacheManager
from bookfinder.services.google_books_service import GoogleBooksService
from bookfinder.services.http_client import OptimizedHTTPClient
from bookfinder.services.image_proxy import PLACEHOLDER_COVER, ImageProxy

VOLUMES = {
    "items": [
        {
            "id": "x1",
            "volumeInfo": {
                "title": "Dune",
                "authors": ["Frank Herbert"],
                "imageLinks": {"thumbnail": "http://books.google.com/dune.jpg"},
            },
        },
        {"id": "x2", "volumeInfo": {}},
    ]
}


class FakeUpstream:
    """Stands in for Google Books and the cover hosts."""

    def __init__(self):
        self.catalog_status = 200
        self.cover_status = 200
        self.requests = []

    def __call__(self, request):
        self.requests.append(request.url)
        if request.url.host == "www.googleapis.com":
            if self.catalog_status != 200:
                return httpx.Response(self.catalog_status)
            return httpx.Response(200, json=VOLUMES)
        if self.cover_status != 200:
            return httpx.Response(self.cover_status)
        return httpx.Response(200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg"})


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def notifications(clock):
    return NotificationChannel(duration=3, clock=clock)


@pytest.fixture
def client(db_file, session_file, upstream, notifications):
    http = OptimizedHTTPClient(transport=httpx.MockTransport(upstream))
    app = create_app(
        db_file=db_file,
        session_file=session_file,
        catalog=GoogleBooksService(http_client=http),
        image_proxy=ImageProxy(CacheManager(), http_client=http),
        notifications=notifications,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def logged_in(client):
    response = client.post("/auth/register", json={"name": "Alice", "email": "alice@example.com", "password": "secret1"})
    assert response.status_code == 200
    return response.json()


def _add(client, external_id="x1", title="Dune", **extra):
    response = client.post("/books", json={"external_id": external_id, "title": title, **extra})
    assert response.status_code == 200
    return response.json()


def _notice(client):
    return client.get("/notifications/current").json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True
    assert body["services"]["cache"]["redis_available"] is False


def test_end_to_end_reading_journey(client):
    response = client.post("/auth/register", json={"name": "Alice", "email": "Alice@Example.com ", "password": "secret1"})
    assert response.status_code == 200
    registered = response.json()
    assert registered["email"] == "alice@example.com"

    client.post("/auth/logout")
    response = client.post("/auth/login", json={"email": "alice@example.com", "password": "secret1"})
    assert response.status_code == 200
    assert response.json() == registered

    added = _add(client, "x1", "Dune", status="to-read")
    entry_id = added["entry"]["id"]
    assert added["stats"] == {"finished": 0, "reading": 0, "total": 1}

    response = client.patch(f"/books/{entry_id}", json={"favourite": True})
    assert response.status_code == 200
    assert response.json()["entry"]["favourite"] is True
    assert response.json()["stats"] == {"finished": 0, "reading": 0, "total": 1}

    response = client.patch(f"/books/{entry_id}", json={"status": "finished"})
    assert response.json()["stats"] == {"finished": 1, "reading": 0, "total": 1}
    assert client.get("/stats").json() == {"finished": 1, "reading": 0, "total": 1}


def test_library_requires_login(client):
    assert client.get("/books").status_code == 401
    assert client.post("/books", json={"external_id": "x1"}).status_code == 401
    assert client.get("/stats").status_code == 401
    assert client.get("/auth/me").status_code == 401


def test_login_failure(client):
    response = client.post("/auth/login", json={"email": "nobody@example.com", "password": "x"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password."
    assert _notice(client)["message"] == "Invalid email or password."
    assert client.get("/auth/me").status_code == 401


def test_duplicate_registration(client, logged_in):
    client.post("/auth/logout")
    response = client.post("/auth/register", json={"name": "A", "email": "ALICE@example.com", "password": "x"})
    assert response.status_code == 409
    assert _notice(client)["level"] == "error"


def test_invalid_email_registration(client):
    response = client.post("/auth/register", json={"name": "A", "email": "nope", "password": "x"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Please enter a valid email."


def test_add_posts_notification(client, logged_in):
    added = _add(client)
    assert added["entry"]["status"] == "to-read"
    assert _notice(client)["message"] == '"Dune" added to your library!'


def test_list_filters(client, logged_in):
    first = _add(client, "x1", "Dune")
    _add(client, "x2", "Emma", status="reading")
    client.patch(f"/books/{first['entry']['id']}", json={"favourite": True})

    assert [b["title"] for b in client.get("/books").json()] == ["Dune", "Emma"]
    assert [b["title"] for b in client.get("/books", params={"status": "reading"}).json()] == ["Emma"]
    assert [b["title"] for b in client.get("/books", params={"favourite": True}).json()] == ["Dune"]
    assert [b["title"] for b in client.get("/books", params={"sort_by": "title", "order": "desc"}).json()] == ["Emma", "Dune"]


def test_update_rejects_immutable_field(client, logged_in):
    entry_id = _add(client)["entry"]["id"]
    response = client.patch(f"/books/{entry_id}", json={"title": "Other"})
    assert response.status_code == 422


def test_favourite_toggle_messages(client, logged_in):
    entry_id = _add(client)["entry"]["id"]
    client.patch(f"/books/{entry_id}", json={"favourite": True})
    assert _notice(client)["message"] == "Added to favourites! ⭐"
    client.patch(f"/books/{entry_id}", json={"favourite": False})
    assert _notice(client)["message"] == "Removed from favourites"
    client.patch(f"/books/{entry_id}", json={"notes": "Great"})
    assert _notice(client)["message"] == "Book updated successfully!"


def test_delete_then_delete_again(client, logged_in):
    entry_id = _add(client)["entry"]["id"]

    response = client.delete(f"/books/{entry_id}")
    assert response.status_code == 200
    assert response.json()["stats"]["total"] == 0
    assert response.json()["message"] == '"Dune" removed from library'

    assert client.delete(f"/books/{entry_id}").status_code == 404
    assert client.get(f"/books/{entry_id}").status_code == 404


def test_profile_update(client, logged_in):
    response = client.patch("/auth/me", json={"name": "Alice L.", "email": "alice.l@example.com"})
    assert response.status_code == 200
    assert client.get("/auth/me").json()["email"] == "alice.l@example.com"
    assert _notice(client)["message"] == "Profile updated successfully."


def test_catalog_search(client):
    response = client.get("/catalog/search", params={"q": "dune"})
    assert response.status_code == 200
    results = response.json()
    assert results[0]["title"] == "Dune"
    assert results[0]["thumbnail"] == "https://books.google.com/dune.jpg"
    assert results[0]["proxied_thumbnail"].startswith("/proxy-image?url=https%3A%2F%2F")
    assert results[1]["title"] == "No Title"
    assert results[1]["authors"] == ["Unknown Author"]


def test_catalog_failure_degrades_to_empty_list(client, upstream):
    upstream.catalog_status = 500
    response = client.get("/catalog/search", params={"q": "dune"})
    assert response.status_code == 200
    assert response.json() == []
    assert _notice(client)["message"] == "Failed to search books. Please try again."


def test_home_shelves(client, upstream):
    assert len(client.get("/catalog/featured").json()) == 2
    upstream.catalog_status = 503
    assert client.get("/catalog/trending").json() == []
    assert _notice(client) is None


def test_proxy_image(client):
    response = client.get("/proxy-image", params={"url": "https://books.google.com/dune.jpg"})
    assert response.status_code == 200
    assert response.content == b"jpeg-bytes"
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["cache-control"] == "public, max-age=86400"


def test_proxy_image_requires_url(client):
    response = client.get("/proxy-image")
    assert response.status_code == 400
    assert response.json()["detail"] == "URL parameter is required"


def test_proxy_image_failure_serves_placeholder(client, upstream):
    upstream.cover_status = 404
    response = client.get("/proxy-image", params={"url": "https://books.google.com/missing.jpg"})
    assert response.status_code == 200
    assert response.content == PLACEHOLDER_COVER
    assert response.headers["content-type"].startswith("image/svg+xml")
    assert _notice(client) is None


def test_notifications_expire_and_dismiss(client, logged_in, clock):
    notice = _notice(client)
    assert notice["message"] == "Registration successful! Welcome to Book Finder."

    clock.advance(3)
    assert _notice(client) is None

    client.post("/auth/logout")
    notice = _notice(client)
    assert client.delete("/notifications/current", params={"id": notice["id"]}).json() == {"dismissed": True}
    assert _notice(client) is None


def test_session_survives_app_restart(db_file, session_file, logged_in, client):
    # A second app over the same files restores the login
    with TestClient(create_app(db_file=db_file, session_file=session_file)) as other:
        assert other.get("/auth/me").json()["email"] == "alice@example.com"
