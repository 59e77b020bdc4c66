"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from chatsync.observability.correlation import CORRELATION_ID_HEADER, bound_correlation_id

from .routes import public, webhooks_whapi


def create_app() -> FastAPI:
    app = FastAPI(
        title="chatsync",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with bound_correlation_id(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(public.router)
    app.include_router(webhooks_whapi.router)

    return app
