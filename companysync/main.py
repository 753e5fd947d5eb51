import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, SessionLocal, engine
from .logging import RequestIdMiddleware, get_logger, setup_logging
from .auth.router import router as auth_router
from .routes.admin import router as admin_router
from .routes.avatars import router as avatars_router
from .routes.companies import router as companies_router
from .routes.company_files import router as company_files_router
from .routes.employees import router as employees_router
from .routes.finance import router as finance_router
from .routes.invites import router as invites_router
from .routes.notes import router as notes_router
from .routes.reports import router as reports_router
from .routes.settings import router as settings_router
from .routes.support import router as support_router
from .routes.tasks import router as tasks_router
from .services import app_settings
from .services.support_hub import SupportHub
from .storage.local_provider import URL_PREFIX

log = get_logger("companysync.app")


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.state.support_hub = SupportHub()

    # Routers
    app.include_router(auth_router)
    app.include_router(companies_router)
    app.include_router(employees_router)
    app.include_router(invites_router)
    app.include_router(finance_router)
    app.include_router(notes_router)
    app.include_router(tasks_router)
    app.include_router(reports_router)
    app.include_router(company_files_router)
    app.include_router(admin_router)
    app.include_router(settings_router)
    app.include_router(support_router)
    app.include_router(avatars_router)

    # Uploaded files (local provider only; blob URLs point at Azure)
    if settings.storage_provider == "local":
        os.makedirs(settings.upload_dir, exist_ok=True)
        app.mount(URL_PREFIX, StaticFiles(directory=settings.upload_dir), name="uploads")

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            db = SessionLocal()
            try:
                added = app_settings.seed_defaults(db)
                db.commit()
            finally:
                db.close()
            log.info("startup.db_ready", tables=len(Base.metadata.tables), seeded_settings=added)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("companysync.main:app", host=settings.host, port=settings.port)
