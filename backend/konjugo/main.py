import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from konjugo.database import engine, Base
from konjugo.errors import KonjugoError
from konjugo.routers import activity, practice_history, task_sync, tasks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    alembic_ini = Path(__file__).resolve().parent.parent / "alembic.ini"
    if alembic_ini.exists() and os.environ.get("KONJUGO_SKIP_MIGRATIONS") != "1":
        # Dispose engine pool to avoid SQLite locking conflicts with alembic
        engine.dispose()
        await asyncio.to_thread(_run_alembic, alembic_ini)
    else:
        Base.metadata.create_all(bind=engine)
    yield


def _run_alembic(alembic_ini: Path):
    from alembic import command
    from alembic.config import Config
    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str(alembic_ini.parent / "alembic"))
    command.upgrade(alembic_cfg, "head")


app = FastAPI(title="Konjugo German Practice API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KonjugoError)
async def konjugo_error_handler(request: Request, exc: KonjugoError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "code": "INVALID_REQUEST",
            "details": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        },
    )


app.include_router(tasks.router)
app.include_router(task_sync.router)
app.include_router(practice_history.router)
app.include_router(activity.router)


@app.get("/")
def root():
    return {"app": "konjugo", "version": "0.1.0"}
