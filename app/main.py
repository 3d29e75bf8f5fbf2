"""Entry point for the FastAPI-powered Stremio addon."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .cache import ResponseCache
from .config import Settings, settings
from .database import Database
from .errors import AddonError, InvalidFilterError, NotFoundError
from .filters import FilterCompiler
from .genres import GenreTable
from .list_types import reference_table
from .meta import MetaMapper
from .models import ConfigPayload, PreviewPayload, ValidateKeyPayload
from .security import is_valid_api_key
from .services.addon import AddonResponse, AddonService
from .services.config_store import ConfigStore
from .services.ratings import RatingsClient
from .services.tmdb import TMDBClient
from .utils import parse_extra

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-TMDB-Api-Key"
ENTITY_KINDS = {"person", "company", "keyword", "network"}

ModelT = TypeVar("ModelT", bound=BaseModel)

app: FastAPI


def build_addon_service(
    app_settings: Settings,
    *,
    tmdb_http: httpx.AsyncClient,
    ratings_http: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> AddonService:
    """Wire the shared cache, genre table and clients into one service."""

    cache = ResponseCache(
        default_ttl=app_settings.cache_ttl_seconds,
        max_entries=app_settings.cache_max_entries,
    )
    tmdb = TMDBClient(app_settings, tmdb_http, cache)
    ratings = RatingsClient(
        ratings_http,
        cache,
        metadata_base_url=(
            str(app_settings.metadata_addon_url)
            if app_settings.metadata_addon_url is not None
            else None
        ),
        rpdb_base_url=str(app_settings.rpdb_api_url),
    )

    async def _fetch_genres(api_key: str, content_type: str, language: str | None):
        return await tmdb.get_genres(api_key, content_type, language=language)

    genres = GenreTable(_fetch_genres)
    compiler = FilterCompiler(
        genres, default_certification_country=app_settings.certification_country
    )
    mapper = MetaMapper(
        genres,
        tmdb=tmdb,
        ratings=ratings,
        image_base=app_settings.tmdb_image_base,
        poster_base_urls={
            "rpdb": str(app_settings.rpdb_api_url).rstrip("/"),
            "topPosters": str(app_settings.top_posters_api_url).rstrip("/"),
        },
        rpdb_api_key=app_settings.rpdb_api_key,
        reference_country=app_settings.certification_country,
    )
    return AddonService(
        app_settings, tmdb, genres, compiler, mapper, ConfigStore(session_factory)
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.tmdb_timeout_seconds, connect=5.0),
            headers={"Accept": "application/json"},
        )
    )
    ratings_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    addon_service = build_addon_service(
        settings,
        tmdb_http=tmdb_http,
        ratings_http=ratings_http,
        session_factory=database.session_factory,
    )
    fastapi_app.state.addon_service = addon_service
    fastapi_app.state.database = database
    logger.info("%s %s ready", settings.app_name, settings.addon_version)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await addon_service.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description=settings.addon_description,
        version=settings.addon_version,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_addon_service(app: FastAPI) -> AddonService:
    service = getattr(app.state, "addon_service", None)
    if not isinstance(service, AddonService):
        raise RuntimeError("Addon service not initialised")
    return service


def _addon_response(result: AddonResponse) -> JSONResponse:
    return JSONResponse(
        result.body, status_code=result.status_code, headers=result.response_headers()
    )


def _raw_extra(request: Request) -> dict[str, str]:
    """Parse the last path segment from the undecoded request path.

    Values may contain encoded ``&``, ``=`` or ``/`` which must survive until
    the segment has been split.
    """

    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    segment = raw_path.decode("latin-1").split("?", 1)[0].rsplit("/", 1)[-1]
    return parse_extra(segment)


def _api_key_from(request: Request, body: dict[str, Any] | None = None) -> str | None:
    header = request.headers.get(API_KEY_HEADER)
    if header:
        return header.strip()
    query = request.query_params.get("apiKey")
    if query:
        return query.strip()
    if body:
        value = body.get("apiKey") or body.get("api_key")
        if isinstance(value, str):
            return value.strip()
    return None


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidFilterError("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise InvalidFilterError("Request body must be a JSON object")
    return body


def _validate(model: type[ModelT], body: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid request")
        raise InvalidFilterError(f"{location}: {message}" if location else message) from exc


def _content_type(value: str) -> str:
    if value not in {"movie", "series"}:
        raise InvalidFilterError(f"Unsupported content type: {value}")
    return value


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(AddonError)
    async def _addon_error_handler(_: Request, exc: AddonError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("API request failed: %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # Addon protocol

    @fastapi_app.get("/manifest.json")
    async def default_manifest() -> JSONResponse:
        service = get_addon_service(fastapi_app)
        return _addon_response(await service.build_manifest(""))

    @fastapi_app.get("/{user_id}/manifest.json")
    async def manifest(user_id: str) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        return _addon_response(await service.build_manifest(user_id))

    @fastapi_app.get("/{user_id}/catalog/{content_type}/{catalog_id}.json")
    async def catalog(user_id: str, content_type: str, catalog_id: str) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        return _addon_response(await service.get_catalog(user_id, content_type, catalog_id))

    @fastapi_app.get("/{user_id}/catalog/{content_type}/{catalog_id}/{extra:path}")
    async def catalog_with_extra(
        request: Request, user_id: str, content_type: str, catalog_id: str, extra: str
    ) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        result = await service.get_catalog(
            user_id, content_type, catalog_id, _raw_extra(request)
        )
        return _addon_response(result)

    @fastapi_app.get("/{user_id}/meta/{content_type}/{meta_id}.json")
    async def meta(user_id: str, content_type: str, meta_id: str) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        return _addon_response(await service.get_meta(user_id, content_type, meta_id))

    @fastapi_app.get("/{user_id}/meta/{content_type}/{meta_id}/{extra:path}")
    async def meta_with_extra(
        user_id: str, content_type: str, meta_id: str, extra: str
    ) -> JSONResponse:
        service = get_addon_service(fastapi_app)
        return _addon_response(await service.get_meta(user_id, content_type, meta_id))

    # Configuration API: credential checks and reference data

    def _require_key(request: Request, body: dict[str, Any] | None = None) -> str:
        api_key = _api_key_from(request, body)
        if not api_key or not is_valid_api_key(api_key):
            raise AddonError("A valid TMDB API key is required", status_code=400)
        return api_key

    @fastapi_app.post("/api/validate-key")
    async def validate_key(request: Request) -> dict[str, Any]:
        body = await _json_body(request) if await request.body() else {}
        payload = _validate(ValidateKeyPayload, body)
        api_key = request.headers.get(API_KEY_HEADER) or payload.api_key
        if not api_key or not is_valid_api_key(api_key):
            return {"valid": False, "error": "API key must be 32 hexadecimal characters"}
        service = get_addon_service(fastapi_app)
        valid = await service.tmdb.validate_api_key(api_key.strip())
        return {"valid": valid} if valid else {"valid": False, "error": "Invalid TMDB API key"}

    @fastapi_app.get("/api/genres/{content_type}")
    async def genres(request: Request, content_type: str) -> list[dict[str, Any]]:
        api_key = _require_key(request)
        service = get_addon_service(fastapi_app)
        return await service.genres.get(
            _content_type(content_type),
            api_key=api_key,
            language=request.query_params.get("language") or None,
        )

    @fastapi_app.get("/api/languages")
    async def languages(request: Request) -> list[dict[str, Any]]:
        return await get_addon_service(fastapi_app).tmdb.get_languages(_require_key(request))

    @fastapi_app.get("/api/countries")
    async def countries(request: Request) -> list[dict[str, Any]]:
        return await get_addon_service(fastapi_app).tmdb.get_countries(_require_key(request))

    @fastapi_app.get("/api/certifications/{content_type}")
    async def certifications(request: Request, content_type: str) -> dict[str, Any]:
        api_key = _require_key(request)
        return await get_addon_service(fastapi_app).tmdb.get_certifications(
            api_key, _content_type(content_type)
        )

    @fastapi_app.get("/api/watch-providers/{content_type}")
    async def watch_providers(request: Request, content_type: str) -> list[dict[str, Any]]:
        api_key = _require_key(request)
        region = (request.query_params.get("region") or "US").upper()
        return await get_addon_service(fastapi_app).tmdb.get_watch_providers(
            api_key, _content_type(content_type), region
        )

    @fastapi_app.get("/api/watch-regions")
    async def watch_regions(request: Request) -> list[dict[str, Any]]:
        return await get_addon_service(fastapi_app).tmdb.get_watch_regions(_require_key(request))

    @fastapi_app.get("/api/search/{kind}")
    async def search_entities(request: Request, kind: str) -> list[dict[str, Any]]:
        if kind not in ENTITY_KINDS:
            raise NotFoundError(f"Unknown search kind: {kind}")
        query = (request.query_params.get("query") or "").strip()
        tmdb = get_addon_service(fastapi_app).tmdb
        if kind == "network":
            return await tmdb.search_networks(query) if query else []
        api_key = _require_key(request)
        if not query:
            return []
        if kind == "person":
            return await tmdb.search_person(api_key, query)
        if kind == "company":
            return await tmdb.search_company(api_key, query)
        return await tmdb.search_keyword(api_key, query)

    @fastapi_app.get("/api/reference/{name}")
    async def reference(name: str) -> Any:
        try:
            return reference_table(name)
        except KeyError as exc:
            raise NotFoundError(f"Unknown reference table: {name}") from exc

    @fastapi_app.post("/api/preview")
    async def preview(request: Request) -> dict[str, Any]:
        body = await _json_body(request)
        payload = _validate(PreviewPayload, body)
        service = get_addon_service(fastapi_app)
        return await service.preview(
            _api_key_from(request, body),
            payload.content_type,
            payload.filters,
            payload.page,
            preferences=payload.preferences,
        )

    # Configuration API: stored configurations

    @fastapi_app.post("/api/config")
    async def create_config(request: Request) -> JSONResponse:
        body = await _json_body(request)
        payload = _validate(ConfigPayload, body)
        service = get_addon_service(fastapi_app)
        saved = await service.save_config(payload, api_key=_api_key_from(request, body))
        return JSONResponse(
            saved.to_public_payload(_public_base_url(request)), status_code=201
        )

    @fastapi_app.get("/api/configs")
    async def list_configs(request: Request) -> list[dict[str, Any]]:
        service = get_addon_service(fastapi_app)
        configs = await service.list_configs(_api_key_from(request))
        base_url = _public_base_url(request)
        return [config.to_public_payload(base_url) for config in configs]

    @fastapi_app.get("/api/config/{user_id}")
    async def get_config(request: Request, user_id: str) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        config = await service.get_config(user_id, _api_key_from(request))
        return config.to_public_payload(_public_base_url(request))

    @fastapi_app.put("/api/config/{user_id}")
    async def update_config(request: Request, user_id: str) -> dict[str, Any]:
        body = await _json_body(request)
        payload = _validate(ConfigPayload, body)
        service = get_addon_service(fastapi_app)
        saved = await service.save_config(
            payload, api_key=_api_key_from(request, body), user_id=user_id
        )
        return saved.to_public_payload(_public_base_url(request))

    @fastapi_app.delete("/api/config/{user_id}")
    async def delete_config(request: Request, user_id: str) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        await service.delete_config(user_id, _api_key_from(request))
        return {"deleted": True, "userId": user_id}

    @fastapi_app.delete("/api/config/{user_id}/catalog/{catalog_id}")
    async def delete_catalog(request: Request, user_id: str, catalog_id: str) -> dict[str, Any]:
        service = get_addon_service(fastapi_app)
        config = await service.delete_catalog(user_id, catalog_id, _api_key_from(request))
        return config.to_public_payload(_public_base_url(request))

    @fastapi_app.get("/api/{kind}/{entity_id:int}")
    async def entity(request: Request, kind: str, entity_id: int) -> dict[str, Any]:
        if kind not in ENTITY_KINDS:
            raise NotFoundError(f"Unknown entity kind: {kind}")
        api_key = _require_key(request)
        record = await get_addon_service(fastapi_app).tmdb.get_entity(api_key, kind, entity_id)
        if record is None:
            raise NotFoundError(f"{kind.title()} {entity_id} not found")
        return record


def _public_base_url(request: Request) -> str:
    if settings.base_url:
        return settings.base_url
    forwarded_proto = (request.headers.get("x-forwarded-proto") or "").split(",")[0].strip()
    forwarded_host = (request.headers.get("x-forwarded-host") or "").split(",")[0].strip()
    scheme = forwarded_proto or request.url.scheme
    host = forwarded_host or request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


app = create_app()
