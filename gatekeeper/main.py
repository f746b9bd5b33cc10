"""
Gatekeeper HTTP service for nginx auth_request (or any proxy that forwards the
Authorization header and the original URI).
GET /auth -> 200 with X-Gatekeeper-Service, 401 (bad/missing token) or 403 (path not allowed).
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from gatekeeper.config import (
    AUTH_ENDPOINT,
    CACHE_SIZE,
    CONF_PATH,
    JWT_FRESHNESS,
    ORIGINAL_URI_HEADER,
    PRUNE_SIZE,
    SERVICE_HEADER,
    VERSION,
    parse_duration,
)
from gatekeeper.decision import DenyReason, Gatekeeper, bearer_token, build_gatekeeper
from gatekeeper.registry import load_registry_file


def gatekeeper_from_env() -> Gatekeeper:
    """Build the Gatekeeper from GATEKEEPER_* settings. Raises ConfigError."""
    return build_gatekeeper(
        load_registry_file(CONF_PATH),
        freshness=parse_duration(JWT_FRESHNESS),
        cache_size=CACHE_SIZE,
        prune_size=PRUNE_SIZE,
    )


def create_app(gatekeeper: Gatekeeper | None = None, auth_endpoint: str = AUTH_ENDPOINT) -> FastAPI:
    """
    Build the app. Without an injected gatekeeper, one is loaded from the environment on
    startup; a ConfigError there aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "gatekeeper", None) is None:
            app.state.gatekeeper = gatekeeper_from_env()
        yield

    app = FastAPI(title="Gatekeeper", version=VERSION, lifespan=lifespan)
    app.state.gatekeeper = gatekeeper

    @app.get("/", response_class=PlainTextResponse)
    @app.get("/live", response_class=PlainTextResponse)
    def live():
        """Liveness probe."""
        return "OK\n"

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "gatekeeper"}

    def auth(request: Request):
        """Allow or deny the proxied request. No error detail in the response."""
        decision = request.app.state.gatekeeper.decide(
            bearer_token(request.headers.get("Authorization")),
            request.headers.get(ORIGINAL_URI_HEADER),
        )
        if decision.allowed:
            return PlainTextResponse("OK\n", headers={SERVICE_HEADER: decision.service_id})
        if decision.reason is DenyReason.FORBIDDEN:
            return PlainTextResponse("Forbidden\n", status_code=403)
        return PlainTextResponse(
            "Unauthorized\n",
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
        )

    app.add_api_route(f"/{auth_endpoint.strip('/')}", auth, methods=["GET"], response_class=PlainTextResponse)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from gatekeeper.config import HOST, PORT

    uvicorn.run(
        "gatekeeper.main:app",
        host=HOST,
        port=PORT,
    )
