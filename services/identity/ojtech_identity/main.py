import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ojtech_shared.middleware.body_limit import body_limit_middleware
from ojtech_shared.middleware.error_handler import (
    error_envelope_middleware,
    handle_mapped,
    install_error_handlers,
)
from ojtech_shared.middleware.request_id import request_id_middleware
from ojtech_shared.middleware.response_state import ResponseCommitMiddleware

from ojtech_identity.auth import store
from ojtech_identity.auth.router import oauth2_router, router as auth_router
from ojtech_identity.config import Settings
from ojtech_identity.database import init_db
from ojtech_identity.rate_limit import limiter
from ojtech_identity.redis_client import close_redis_client
from ojtech_identity.users.router import router as users_router

logger = logging.getLogger(__name__)


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## OJTech Identity Service

Authentication core for the OJTech platform:

* **Local accounts**: sign up with username, email and password; sign in with either
  the username or the email.
* **Social login**: Google, GitHub and Microsoft via OAuth2. The first login creates
  the account; later logins refresh the display name.
* **Tokens**: HS256 JWT access tokens carrying the account id and roles.

### Authentication
All protected endpoints require:
```
Authorization: Bearer <access_token>
```
Admin endpoints additionally require `ROLE_ADMIN` in the token.

### Error shape
All errors return the same JSON envelope:
```json
{ "status": 404, "error": "Not Found", "message": "...", "path": "/api/users/x" }
```
Validation errors (`400`) add an `errors` list of `"field: detail"` strings.
"""

_TAGS_METADATA = [
    {
        "name": "auth",
        "description": "Local sign-up and sign-in, and the caller's identity.",
    },
    {
        "name": "oauth2",
        "description": (
            "Social login. `GET /oauth2/authorize/{provider}` redirects to the provider; "
            "the provider calls back `GET /oauth2/callback/{provider}`, which redirects "
            "to the frontend with `?token=<jwt>`."
        ),
    },
    {
        "name": "users",
        "description": "**Admin only.** Look up accounts by email or username.",
    },
]


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── App factory ───────────────────────────────────────────────────────────────

def get_settings() -> Settings:
    return Settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    session_factory = init_db(settings.identity_database_url)
    if settings.seed_roles:
        async with session_factory() as session:
            created = await store.seed_roles(session)
            await session.commit()
        if created:
            logger.info("Seeded roles: %s", ", ".join(created))
    yield
    await close_redis_client()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(
        title="OJTech Identity Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Attach rate limiter state before middleware
    app.state.limiter = limiter
    install_error_handlers(app)
    # SlowAPIMiddleware looks the handler up by exact exception class.
    app.add_exception_handler(RateLimitExceeded, handle_mapped)

    # Middleware is applied in reverse-registration order (last added = outermost).
    # The error envelope wraps everything but CORS and the commit marker so
    # failures raised by the inner middleware still leave as an ErrorResponse.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(body_limit_middleware(settings.max_upload_bytes))
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    app.add_middleware(ResponseCommitMiddleware)

    app.include_router(auth_router)
    app.include_router(oauth2_router)
    app.include_router(users_router)

    @app.get("/health", response_model=HealthResponse, tags=["health"], include_in_schema=True)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="identity")

    return app


app = create_app()
