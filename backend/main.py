import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

import uvicorn  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from database.base import init_db  # noqa: E402
from handlers.asset_handler import router as asset_router  # noqa: E402
from handlers.composition_handler import router as composition_router  # noqa: E402
from handlers.edit_handler import router as edit_router  # noqa: E402
from handlers.health_handler import router as health_router  # noqa: E402
from handlers.project_handler import router as project_router  # noqa: E402

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)

# (file env var, level env var, loggers written to that file)
LOG_FILE_ROUTES = [
    ("EDIT_AGENT_LOG_FILE", "EDIT_AGENT_LOG_LEVEL", ["agent.edit_agent", "handlers.edit_handler"]),
    (
        "COMPOSITION_LOG_FILE",
        "COMPOSITION_LOG_LEVEL",
        ["operators.composition_editor", "operators.plan_executor"],
    ),
]


def _resolve_log_path(value: str) -> Path:
    log_path = Path(value)
    return log_path if log_path.is_absolute() else ROOT_DIR / log_path


def _route_to_file(logger_names: list[str], log_path: Path, level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    for name in logger_names:
        target = logging.getLogger(name)
        target.setLevel(level)
        if any(getattr(h, "baseFilename", None) == str(log_path) for h in target.handlers):
            continue
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        target.addHandler(handler)


for file_var, level_var, logger_names in LOG_FILE_ROUTES:
    log_file = os.getenv(file_var, "").strip()
    if log_file:
        _route_to_file(
            logger_names,
            _resolve_log_path(log_file),
            os.getenv(level_var, LOG_LEVEL).strip() or LOG_LEVEL,
        )

AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "true").lower() in {"1", "true", "yes"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if AUTO_CREATE_TABLES:
        init_db()
    yield


app = FastAPI(title="Composition Editor Backend", lifespan=lifespan)


app.include_router(health_router)
app.include_router(project_router)
app.include_router(asset_router)
app.include_router(composition_router)
app.include_router(edit_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:4173",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
