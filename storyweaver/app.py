import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from storyweaver import ROOT_DIR, storage
from storyweaver.routes import router

load_dotenv(ROOT_DIR / ".env")

DEFAULT_DATA_DIR = ROOT_DIR / "data"


def create_app(data_dir: Path | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)

    app = FastAPI(title="Storyweaver")
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
