import base64
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import settings
from database import init_db
from routers import legend, projects

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


# ── Basic Auth middleware ─────────────────────────────────────────────────────

class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Guards /api/* when settings.auth_enabled is set (checked per request)."""

    def __init__(self, app, username: str, password: str):
        super().__init__(app)
        self._token = base64.b64encode(f"{username}:{password}".encode()).decode()

    async def dispatch(self, request: Request, call_next):
        if settings.auth_enabled and request.url.path.startswith("/api/"):
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Basic ") or auth[6:] != self._token:
                return Response(
                    content="Unauthorized",
                    status_code=401,
                    headers={"WWW-Authenticate": f'Basic realm="{settings.service_title}"'},
                )
        return await call_next(request)


# ── App lifespan ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    Path(settings.uploads_dir).mkdir(parents=True, exist_ok=True)
    yield


# ── App setup ─────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.service_title,
    description=settings.service_description,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(BasicAuthMiddleware, username=settings.admin_user, password=settings.admin_pass)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects.router, prefix="/api", tags=["Projects"])
app.include_router(legend.router,   prefix="/api", tags=["Legend"])


@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse("/docs")
