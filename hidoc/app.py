import json
import logging
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

# Load env before the app modules read their settings.
load_dotenv(ENV_PATH)

from fastapi import FastAPI, HTTPException  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402

from hidoc.db.session import SessionLocal  # noqa: E402
from hidoc.middleware.tracing import TRACE_ID_CTX_VAR, TracingMiddleware  # noqa: E402
from hidoc.models import init_db  # noqa: E402
from hidoc.routes import ai_routes, param_target_routes  # noqa: E402
from hidoc.services.ai_config import load_ai_config  # noqa: E402
from hidoc.services.interpreter import get_interpreter  # noqa: E402
from hidoc.services.param_targets import seed_param_targets  # noqa: E402
from hidoc.utils.exceptions import (  # noqa: E402
    PersistenceContractViolation,
    handle_http_exception,
    handle_persistence_violation,
    handle_unhandled_exception,
    handle_validation_exception,
)


class JsonFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        payload = {
            "timestamp": datetime.utcnow().isoformat(timespec="seconds") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "message": record.getMessage(),
            "trace_id": TRACE_ID_CTX_VAR.get() or None,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging() -> logging.Logger:
    logger = logging.getLogger("hidoc")
    level = logging.DEBUG if load_ai_config().verbose else logging.INFO
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logger


logger = configure_logging()

app = FastAPI(title="HiDoc Interpretation Backend", version="0.1.0")
app.add_middleware(TracingMiddleware)

app.add_exception_handler(HTTPException, handle_http_exception)
app.add_exception_handler(RequestValidationError, handle_validation_exception)
app.add_exception_handler(PersistenceContractViolation, handle_persistence_violation)
app.add_exception_handler(Exception, handle_unhandled_exception)


@app.on_event("startup")
def _init_db():
    init_db()
    db = SessionLocal()
    try:
        seed_param_targets(db)
    except Exception:
        # Seeding is best-effort; never block startup
        logger.warning("Param target seeding failed", exc_info=True)
    finally:
        db.close()
    index = get_interpreter().param_index
    if index is not None:
        try:
            logger.info({"function": "startup", "param_targets": len(index.known_codes())})
        except Exception:
            logger.warning("Param index warm-up failed", exc_info=True)
    status = load_ai_config()
    logger.info({"function": "startup", "ai_configured": status.configured, "model": status.model})


app.include_router(ai_routes.router)
app.include_router(param_target_routes.router)


@app.get("/health")
def health():
    return {"status": "ok"}
