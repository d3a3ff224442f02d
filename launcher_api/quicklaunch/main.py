from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .command_queue import CommandQueue
from .config import Settings, settings as default_settings
from .coordinator import SearchCoordinator, WorkerPool
from .crawler import DirectoryCrawler
from .errors import InvalidCommandError
from .keyword_cache import KeywordCache
from .launcher import LaunchInvoker, ProcessChecker
from .logging_utils import setup_launcher_logger
from .models import InputRequest, LaunchRequest, StatusResponse
from .resolver import PathResolver
from .security import require_api_key
from .status import StatusChannel
from .templates import TemplateExpander

VERSION = "2.0.0"


@dataclass(frozen=True)
class Launcher:
    """Every long-lived component of one running launcher, wired together."""

    settings: Settings
    status: StatusChannel
    cache: KeywordCache
    resolver: PathResolver
    pool: WorkerPool
    coordinator: SearchCoordinator
    queue: CommandQueue

    def shutdown(self) -> bool:
        if self.coordinator.active is not None:
            self.queue.cancel()
        return self.pool.shutdown(self.settings.shutdown_grace_seconds)


def build_launcher(
    app_settings: Settings,
    *,
    invoker: Optional[LaunchInvoker] = None,
    process_checker: Optional[ProcessChecker] = None,
    expander: Optional[TemplateExpander] = None,
) -> Launcher:
    status = StatusChannel(app_settings.status_max_length, app_settings.status_history)
    cache = KeywordCache(Path(app_settings.keywords_file))
    resolver = PathResolver(cache, status)
    pool = WorkerPool(app_settings.max_workers)
    coordinator = SearchCoordinator(
        crawler=DirectoryCrawler.from_settings(app_settings, status=status),
        pool=pool,
        status=status,
        roots=app_settings.search_roots,
        update_interval_ms=app_settings.update_interval_ms,
    )
    queue = CommandQueue(
        cache=cache,
        coordinator=coordinator,
        status=status,
        expander=expander or TemplateExpander(
            probe_enabled=app_settings.probe_pages,
            timeout=app_settings.probe_timeout_seconds,
        ),
        invoker=invoker,
        process_checker=process_checker,
        resolver=resolver,
    )
    return Launcher(settings=app_settings, status=status, cache=cache, resolver=resolver,
                    pool=pool, coordinator=coordinator, queue=queue)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the keyword store on startup; stop searches and the pool on shutdown."""
    logger = app.state.logger
    launcher = build_launcher(app.state.settings, **app.state.overrides)
    warning = launcher.cache.load()
    if warning:
        launcher.status.publish(warning)
    launcher.status.publish("Enter a name or command to search/open.")
    app.state.launcher = launcher
    logger.info(f"Launcher ready with {len(launcher.cache)} keywords, "
                f"{launcher.pool.max_workers} crawl workers")

    yield

    if not launcher.shutdown():
        logger.error("Executor did not terminate in time.")
    logger.info("Launcher stopped")


def get_launcher(request: Request) -> Launcher:
    return request.app.state.launcher


def create_app(app_settings: Optional[Settings] = None, **overrides) -> FastAPI:
    app_settings = app_settings or default_settings
    app = FastAPI(title="QuickLaunch API", version=VERSION, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.overrides = overrides
    app.state.logger = setup_launcher_logger("quicklaunch", app_settings.log_level)

    origins = (
        [o.strip() for o in app_settings.cors_origins.split(",")]
        if app_settings.cors_origins
        else ["*"]
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health(response: Response, launcher: Launcher = Depends(get_launcher)):
        response.headers["Cache-Control"] = "no-store"
        return {
            "status": "ok",
            "service": "quicklaunch",
            "version": VERSION,
            "keywords": len(launcher.cache),
            "time": datetime.now().astimezone().isoformat()
        }

    @app.get("/status", dependencies=[Depends(require_api_key)], response_model=StatusResponse)
    def status(drain: bool = True, launcher: Launcher = Depends(get_launcher)):
        queue = launcher.queue
        return StatusResponse(
            state=queue.state,
            current=queue.current_name,
            candidates=queue.candidates,
            pending=len(queue.pending),
            status=launcher.status.latest,
            messages=launcher.status.drain() if drain else [],
        )

    @app.post("/input", dependencies=[Depends(require_api_key)])
    def submit_input(body: InputRequest, background: BackgroundTasks,
                     launcher: Launcher = Depends(get_launcher)):
        try:
            outcomes = launcher.queue.submit(body.text)
        except InvalidCommandError as e:
            raise HTTPException(400, detail=str(e))
        background.add_task(launcher.queue.drive)
        return {
            "outcomes": [o.model_dump() for o in outcomes],
            "pending": len(launcher.queue.pending),
        }

    @app.post("/launch", dependencies=[Depends(require_api_key)])
    def launch(body: LaunchRequest, background: BackgroundTasks,
               launcher: Launcher = Depends(get_launcher)):
        try:
            outcome = launcher.queue.select(body.path)
        except InvalidCommandError as e:
            raise HTTPException(400, detail=str(e))
        background.add_task(launcher.queue.drive)
        return outcome.model_dump()

    @app.post("/skip", dependencies=[Depends(require_api_key)])
    def skip(background: BackgroundTasks, launcher: Launcher = Depends(get_launcher)):
        launcher.queue.skip()
        background.add_task(launcher.queue.drive)
        return {"state": launcher.queue.state}

    @app.post("/cancel", dependencies=[Depends(require_api_key)])
    def cancel(launcher: Launcher = Depends(get_launcher)):
        return {"cancelled": launcher.queue.cancel(), "state": launcher.queue.state}

    @app.get("/keywords", dependencies=[Depends(require_api_key)])
    def keywords(launcher: Launcher = Depends(get_launcher)):
        return {"keywords": [r.model_dump() for r in launcher.cache.records()]}

    @app.get("/resolve", dependencies=[Depends(require_api_key)])
    def resolve(q: str = Query(..., min_length=1), launcher: Launcher = Depends(get_launcher)):
        r = launcher.resolver.resolve(q.replace(" ", ""))
        return {**r.model_dump(), "needs_search": r.needs_search}

    return app


app = create_app()
