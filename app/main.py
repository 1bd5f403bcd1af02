from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.core.articles import (
    ArticleExistsError,
    InvalidArticleLinkError,
    create_article,
    get_article_page,
)
from app.core.extraction_pipeline import (
    ExhaustedError,
    ExtractionPipeline,
    ExtractionTimeoutError,
    FetchRequiredError,
    RejectedError,
)
from app.core.settings import Settings, configure_logging
from app.core.storage import get_db, init_db

logger = logging.getLogger(__name__)

_settings = Settings.from_env()

app = FastAPI(title="reading-list")
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https?://.*" if any("*" in o for o in _settings.cors_origins) else None,
    allow_origins=[o for o in _settings.cors_origins if "*" not in o],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Accept", "Authorization", "Content-Type"],
    max_age=300,
)

_pipeline: ExtractionPipeline | None = None


@app.on_event("startup")
def _startup() -> None:
    global _pipeline
    configure_logging(_settings.log_level)
    _settings.validate()
    init_db(_settings)
    _pipeline = ExtractionPipeline.from_settings(_settings)
    logger.info(
        f"Started with provider={_pipeline.provider.name} model={_pipeline.provider.model_id} "
        f"attempts={_pipeline.max_attempts}"
    )


def get_pipeline() -> ExtractionPipeline:
    assert _pipeline is not None, "Pipeline not initialized"
    return _pipeline


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"Malformed request to {request.url.path}: {len(exc.errors())} validation errors")
    return error_response("invalid request body", 400)


class ArticleRequest(BaseModel):
    articleLink: str = ""


@app.get("/health")
def health():
    return get_db().health()


@app.get("/")
def index():
    """Describe the available endpoints."""
    record = (
        "{id: integer, title: string, author: string, summary: string, dateRead: string, "
        "datePublished: string, link: string, img_path: string, type: integer}"
    )
    return {
        "GET /articles": {
            "accepts": "?page=N (1-based, 10 per page)",
            "returns": f"{{totalArticles: integer, articles: [{record}]}}",
            "description": "Returns one page of articles, newest first",
        },
        "GET /articles/all": {
            "accepts": "N/A",
            "returns": f"[{record}]",
            "description": "Returns all the articles",
        },
        "POST /articles": {
            "accepts": "{articleLink: string}",
            "returns": record,
            "description": "Adds a new article using the provided link and returns the saved article metadata",
        },
        "GET /health": {
            "accepts": "N/A",
            "returns": "Database health status",
            "description": "Returns the health status of the database",
        },
    }


@app.get("/articles")
def articles_page(page: str = "1"):
    """Paginated article list.

    Args:
        page: 1-based page number
    """
    try:
        page_number = int(page)
    except ValueError:
        return error_response(f"invalid page number: {page}", 400)
    if page_number < 1:
        return error_response(f"invalid page number: {page}", 400)

    articles, total = get_article_page(get_db(), page_number)
    return {
        "totalArticles": total,
        "articles": [a.to_dict() for a in articles],
    }


@app.get("/articles/all")
def articles_all():
    return [a.to_dict() for a in get_db().get_all_articles()]


@app.post("/articles")
async def articles_create(body: ArticleRequest):
    """Extract metadata for a link and add it to the reading list."""
    if not body.articleLink.strip():
        return error_response("missing required Article fields", 400)

    try:
        article = await create_article(get_db(), get_pipeline(), body.articleLink)
    except InvalidArticleLinkError as e:
        return error_response(str(e), 400)
    except ArticleExistsError:
        return error_response("article exists in db", 409)
    except RejectedError:
        return error_response("link supplied is not an article or book", 422)
    except FetchRequiredError as e:
        logger.warning(f"Could not fetch {body.articleLink}: {e}")
        return error_response("could not fetch the page content", 502)
    except ExtractionTimeoutError as e:
        logger.warning(f"Extraction timed out for {body.articleLink}: {e}")
        return error_response(f"extraction timed out after {e.attempts} attempts", 504)
    except ExhaustedError as e:
        logger.warning(f"Extraction failed for {body.articleLink}: {e} (last error: {e.last_error!r})")
        return error_response(f"extraction failed after {e.attempts} attempts", 502)

    return JSONResponse(article.to_dict(), status_code=201)
