import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fate_weaver.errors import BusyError, ValidationError
from fate_weaver.llm import LLM
from fate_weaver.routes import router
from fate_weaver.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


async def _busy(request: Request, exc: BusyError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app(data_dir: Path | None = None, llm: LLM | None = None) -> FastAPI:
    """Build the API app.

    `llm` replaces the HTTP narrator built from settings; tests pass a stub.
    """
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    logger.info("data dir %s", resolved)

    app = FastAPI(title="Fate Weaver")
    app.state.storage = Storage(resolved)
    app.state.llm = llm
    app.state.games = {}
    app.add_exception_handler(BusyError, _busy)
    app.add_exception_handler(ValidationError, _invalid)
    app.include_router(router, prefix="/api")
    return app
