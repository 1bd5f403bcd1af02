"""Tests for the HTTP routes in main.py"""

import sqlite3
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import app.main as main
from app.core.extraction_pipeline import (
    ExhaustedError,
    ExtractionResult,
    ExtractionTimeoutError,
    FetchRequiredError,
    RejectedError,
)
from app.core.llm_providers import LLMError
from app.core.storage import DB
from app.providers.content_types import ExtractedMetadata, LocalHints, StoredArticle

LINK = "https://example.com/blog/post"


@pytest.fixture
def db():
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    database = DB(conn=conn)
    database.init()
    yield database
    conn.close()


@pytest.fixture
def pipeline():
    mock = MagicMock()
    mock.run = AsyncMock(
        return_value=ExtractionResult(
            url=LINK,
            metadata=ExtractedMetadata(
                title="How We Scaled Search",
                author="Jane Doe",
                summary="The team describes how they scaled search.",
                date_published="2024-09-20",
                type=0,
            ),
            hints=LocalHints.empty(),
            attempts=1,
            completed_at=datetime(2024, 9, 21, tzinfo=timezone.utc),
        )
    )
    return mock


@pytest.fixture
def client(monkeypatch, db, pipeline):
    monkeypatch.setattr(main, "get_db", lambda: db)
    monkeypatch.setattr(main, "get_pipeline", lambda: pipeline)
    return TestClient(main.app)


def seed(db, count):
    for i in range(count):
        db.insert_article(
            StoredArticle(
                title=f"Article {i}",
                author="",
                summary="s",
                date_read=f"2024-02-{i + 1:02d}",
                date_published="",
                link=f"https://example.com/{i}",
                type=0,
            )
        )


class TestReadRoutes:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "up", "message": "It's healthy", "articles": 0}

    def test_index_lists_endpoints(self, client):
        body = client.get("/").json()
        assert {"GET /articles", "GET /articles/all", "POST /articles", "GET /health"} <= set(body)

    def test_articles_page(self, client, db):
        seed(db, 12)
        body = client.get("/articles", params={"page": 2}).json()
        assert body["totalArticles"] == 12
        assert len(body["articles"]) == 2
        assert body["articles"][0]["dateRead"] == "2024-02-02"

    def test_articles_default_page(self, client, db):
        seed(db, 3)
        body = client.get("/articles").json()
        assert len(body["articles"]) == 3

    @pytest.mark.parametrize("page", ["0", "-1", "abc"])
    def test_invalid_page(self, client, page):
        response = client.get("/articles", params={"page": page})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_all_articles(self, client, db):
        seed(db, 2)
        body = client.get("/articles/all").json()
        assert [a["link"] for a in body] == ["https://example.com/1", "https://example.com/0"]


class TestCreateRoute:
    def test_created(self, client, pipeline):
        response = client.post("/articles", json={"articleLink": LINK})

        assert response.status_code == 201
        body = response.json()
        assert body["title"] == "How We Scaled Search"
        assert body["dateRead"] == "2024-09-21"
        assert body["datePublished"] == "2024-09-20"
        assert body["img_path"] == ""
        assert body["type"] == 0
        assert isinstance(body["id"], int)

    def test_missing_link(self, client, pipeline):
        response = client.post("/articles", json={})
        assert response.status_code == 400
        pipeline.run.assert_not_awaited()

    def test_invalid_link(self, client, pipeline):
        response = client.post("/articles", json={"articleLink": "not a url"})
        assert response.status_code == 400
        pipeline.run.assert_not_awaited()

    def test_duplicate(self, client, pipeline):
        client.post("/articles", json={"articleLink": LINK})
        pipeline.run.reset_mock()

        response = client.post("/articles", json={"articleLink": LINK})

        assert response.status_code == 409
        assert response.json() == {"error": "article exists in db"}
        pipeline.run.assert_not_awaited()

    def test_rejected(self, client, pipeline, db):
        metadata = ExtractedMetadata(title="", author="", summary="", date_published="", type=-1)
        pipeline.run.side_effect = RejectedError(metadata)

        response = client.post("/articles", json={"articleLink": LINK})

        assert response.status_code == 422
        assert db.get_article_count() == 0

    @pytest.mark.parametrize(
        "error, status",
        [
            (ExhaustedError(3, LLMError("boom", provider="Fake", retriable=True)), 502),
            (ExtractionTimeoutError(2, None, 120.0), 504),
            (FetchRequiredError("could not fetch page content"), 502),
        ],
    )
    def test_extraction_failures(self, client, pipeline, db, error, status):
        pipeline.run.side_effect = error

        response = client.post("/articles", json={"articleLink": LINK})

        assert response.status_code == status
        assert "error" in response.json()
        assert db.get_article_count() == 0

    @pytest.mark.parametrize("payload", [{"articleLink": None}, {"articleLink": 123}, ["not", "an", "object"]])
    def test_malformed_body_is_bad_request(self, client, pipeline, payload):
        response = client.post("/articles", json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": "invalid request body"}
        pipeline.run.assert_not_awaited()

    def test_non_json_body_is_bad_request(self, client, pipeline):
        response = client.post(
            "/articles", content="not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "invalid request body"}
        pipeline.run.assert_not_awaited()
