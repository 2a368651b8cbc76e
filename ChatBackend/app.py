import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ChatBackend.config import Settings, get_settings
from ChatBackend.database import init_db, make_engine, make_session_factory
from ChatBackend.errors import InternalError
from ChatBackend.services.character_service import seed_default_characters
from ChatBackend.services.completion import OpenAICompletionProvider
from ChatBackend.subapps.auth_routes import router as auth_router
from ChatBackend.subapps.character_routes import router as characters_router
from ChatBackend.subapps.chat_routes import router as chat_router

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


async def _invalid_request_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("request.invalid: errors=%d", len(exc.errors()))
    return JSONResponse(status_code=400, content={"detail": "Invalid request body"})


# Last-resort handler: log server-side, never leak internals to the client
async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.error: %s %s", request.method, request.url.path, exc_info=exc)
    err = InternalError()
    return JSONResponse(status_code=err.status_code, content={"detail": err.detail})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        if settings.seed_default_characters:
            db = session_factory()
            try:
                seed_default_characters(db)
            finally:
                db.close()
        yield
        engine.dispose()

    app = FastAPI(title="Persona Chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.completion_provider = OpenAICompletionProvider(settings.chat_provider, settings.chat_model)

    app.add_exception_handler(RequestValidationError, _invalid_request_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(auth_router)
    app.include_router(characters_router)
    app.include_router(chat_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


_configure_logging()

app = create_app()
