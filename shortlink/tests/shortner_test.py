from datetime import timedelta

from shortlink.db.Models.models import ShortLink, STATUS_ACTIVE, utcnow

GENERATE = "/api/v1/shortlink/generate"


def test_generate_short_link_success(client):
    """Test successful link generation."""
    response = client.post(GENERATE, json={"url": "https://example.com/test"})
    assert response.status_code == 201
    data = response.json()
    assert data["original_url"] == "https://example.com/test"
    assert 4 <= len(data["short_code"]) <= 6
    assert data["short_link"] == f"http://s.test/{data['short_code']}"
    assert data["expire_at"] is None


def test_generate_idempotent(client, sample_urls):
    """Same URL returns the same short code."""
    for url in sample_urls:
        code1 = client.post(GENERATE, json={"url": url}).json()["short_code"]
        code2 = client.post(GENERATE, json={"url": url}).json()["short_code"]
        assert code1 == code2


def test_generate_with_params_and_expiry(client):
    response = client.post(
        GENERATE,
        json={
            "url": "https://example.com/campaign",
            "params": {"utm_source": "newsletter", "page": 2},
            "expire_at": "2099-12-31T23:59:59Z",
        },
    )
    assert response.status_code == 201
    assert response.json()["expire_at"].startswith("2099-12-31T23:59:59")


def test_generate_invalid_url(client):
    """Invalid URL formats are rejected as bad requests."""
    invalid_urls = [
        "not-a-url",
        "ftp://example.com",  # Wrong protocol
        "http://",  # Missing domain
        "https://example.com/" + "a" * 2100,
    ]

    for invalid_url in invalid_urls:
        response = client.post(GENERATE, json={"url": invalid_url})
        assert response.status_code == 400, f"Should reject: {invalid_url[:40]}"


def test_generate_invalid_expiry(client):
    response = client.post(GENERATE, json={"url": "https://example.com/", "expire_at": "soon"})
    assert response.status_code == 400


def test_redirect_success(client):
    """Test successful redirect."""
    short_code = client.post(GENERATE, json={"url": "https://example.com/redirect-test"}).json()["short_code"]

    response = client.get(f"/{short_code}", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "https://example.com/redirect-test"


def test_redirect_merges_query_params(client):
    short_code = client.post(GENERATE, json={"url": "https://example.com/page?a=1&b=2"}).json()["short_code"]

    response = client.get(f"/{short_code}?b=3&c=4&c=5", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "https://example.com/page?a=1&b=3&c=4"


def test_redirect_is_case_insensitive(client):
    short_code = client.post(GENERATE, json={"url": "https://example.com/case"}).json()["short_code"]
    response = client.get(f"/{short_code.lower()}", follow_redirects=False)
    assert response.status_code == 302


def test_redirect_not_found(client):
    """Test redirect with non-existent short code."""
    response = client.get("/ZZZZ", follow_redirects=False)
    assert response.status_code == 404


def test_redirect_expired(client, store):
    store.create(
        ShortLink(
            short_code="OLDX",
            original_url="https://example.com/old",
            status=STATUS_ACTIVE,
            expire_at=utcnow() - timedelta(hours=1),
        )
    )
    response = client.get("/OLDX", follow_redirects=False)
    assert response.status_code == 410


def test_redirect_records_visit(client, sink, dispatcher):
    """Each redirect updates analytics and ships an access log."""
    short_code = client.post(GENERATE, json={"url": "https://example.com/clicks"}).json()["short_code"]

    for _ in range(3):
        client.get(
            f"/{short_code}",
            headers={"referer": "https://www.google.com/search?q=x", "user-agent": "pytest"},
            follow_redirects=False,
        )

    assert dispatcher.jobs == 3
    assert len(sink.messages) == 3
    assert sink.messages[0].short_code == short_code
    assert sink.messages[0].user_agent == "pytest"

    data = client.get(f"/api/v1/analytics/{short_code}").json()
    assert data["pv"] == 3
    assert data["uv"] == 1
    assert data["top_sources"] == [{"source": "google", "count": 3}]


def test_redirect_uses_forwarded_client_ip(client, sink):
    short_code = client.post(GENERATE, json={"url": "https://example.com/ip"}).json()["short_code"]
    client.get(f"/{short_code}", headers={"x-forwarded-for": "9.9.9.9, 10.0.0.1"}, follow_redirects=False)
    assert sink.messages[-1].client_ip == "9.9.9.9"


def test_analytics_unknown_code(client):
    assert client.get("/api/v1/analytics/ZZZZ").status_code == 404


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
