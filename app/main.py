import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.api.v1.bulk_operations.router import router as bulk_operations_router
from app.api.v1.bulk_operations.router import students_router as bulk_students_router
from app.api.v1.student_import.router import router as student_import_router
from app.core.config import settings


def create_app() -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(title="Bulk Student Operations")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(bulk_students_router)
    app.include_router(bulk_operations_router)
    app.include_router(student_import_router)

    # Export files: <upload_dir>/exports/<tenant_id>/<file>
    app.mount(
        settings.upload_url_prefix.rstrip("/") or "/uploads",
        StaticFiles(directory=settings.upload_dir, check_dir=False),
        name="uploads",
    )

    return app


app = create_app()
