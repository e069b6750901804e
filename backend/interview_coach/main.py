import asyncio
import logging

from fastapi import FastAPI

from .cleanup import purge_stale
from .db import Base, engine, ensure_schema, get_db
from .engine.errors import EngineError
from .routers import auth, health, sessions
from .settings import settings

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

app = FastAPI(title="Interview Coach API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(sessions.router)
app.add_exception_handler(EngineError, sessions.engine_error_handler)


def _run_cleanup() -> None:
	db = next(get_db())
	try:
		removed = purge_stale(db, settings.draft_retention_days)
		logger.info("cleanup removed %d stale rows", removed)
	except Exception:
		logger.warning("cleanup failed", exc_info=True)
	finally:
		db.close()


async def _cleanup_watcher():
	# Run once at startup, then daily
	while True:
		_run_cleanup()
		await asyncio.sleep(24 * 60 * 60)


async def _idle_controller_watcher():
	while True:
		await asyncio.sleep(settings.controller_idle_seconds / 2)
		registry = getattr(app.state, "controllers", None)
		if registry is not None:
			registry.evict_idle(settings.controller_idle_seconds)


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception:
		logger.warning("schema migration failed", exc_info=True)
	app.state.cleanup_task = asyncio.create_task(_cleanup_watcher())
	app.state.idle_task = asyncio.create_task(_idle_controller_watcher())


@app.on_event("shutdown")
async def shutdown_event():
	for name in ("cleanup_task", "idle_task"):
		task = getattr(app.state, name, None)
		if task is not None:
			task.cancel()
	registry = getattr(app.state, "controllers", None)
	if registry is not None:
		registry.close_all()
