import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Body, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from playwright.async_api import Error as PlaywrightError

from config.loader import load_config
from config.settings import get_settings
from core.aggregation.aggregator import ResultAggregator, consume, group_results
from core.aggregation.events import serialize_grouped
from core.errors import ConfigError, ScraperError, StorageError
from core.models import CatalogConfig, MatchedResult, Store
from core.runner import ScrapeRunner, parse_store_list, select_stores
from core.scrapers.scraper_factory import ScraperFactory
from core.storage.factory import create_storage

from .models import ResultsResponse, ScrapeRequest, ScrapeResponse, StatusResponse, StoreInfo

logger = logging.getLogger(__name__)

settings = get_settings()


class ConnectionManager:
    """Tracks open WebSocket clients and fans messages out to them."""

    def __init__(self):
        self.active: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active.append(websocket)
        logger.info("WebSocket client connected (%d open)", len(self.active))

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active:
            self.active.remove(websocket)
        logger.info("WebSocket client disconnected (%d open)", len(self.active))

    async def broadcast(self, message: dict):
        for websocket in list(self.active):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning("Dropping WebSocket client: %s", e)
                self.disconnect(websocket)


class ScrapeState:
    """Process-wide state of the scrape service."""

    def __init__(self):
        self.is_scraping = False
        self.results: List[MatchedResult] = []
        self.aggregator: Optional[ResultAggregator] = None
        self.storage = None
        self.task: Optional[asyncio.Task] = None

    def current_results(self) -> List[MatchedResult]:
        # while a run is in progress, serve what it has found so far
        if self.is_scraping and self.aggregator is not None:
            return list(self.aggregator.results)
        return self.results


manager = ConnectionManager()
state = ScrapeState()


def restore_results():
    """Load the latest persisted run so a restart keeps serving results."""
    state.storage = create_storage(settings)
    if state.storage is None:
        return
    try:
        saved = state.storage.load_latest()
    except StorageError as e:
        logger.error("Failed to load saved results: %s", e)
        return
    if saved:
        state.results = saved
        logger.info("Restored %d results from previous session", len(saved))


@asynccontextmanager
async def lifespan(_app: FastAPI):
    restore_results()
    yield


app = FastAPI(
    title="Drinks Price Tracker API",
    description="Compare beer crate prices across Belgian supermarkets",
    version=settings.PROJECT_VERSION,
    lifespan=lifespan,
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def run_scrape(config: CatalogConfig, stores: List[Store]):
    """Background task: run the scrape and stream its events to clients."""
    aggregator = ResultAggregator()
    state.aggregator = aggregator
    runner = ScrapeRunner(config, storage=state.storage, aggregator=aggregator,
                          debug_dir=settings.debug_dir)
    broadcaster = asyncio.create_task(
        consume(aggregator.queue, lambda event: manager.broadcast(event.to_message()))
    )
    try:
        results, _ = await runner.run(stores)
        state.results = results
    except (ScraperError, PlaywrightError) as e:
        logger.error("Scraping failed: %s", e)
        state.results = list(aggregator.results)
    finally:
        await broadcaster
        state.is_scraping = False
        state.aggregator = None


@app.get("/", tags=["General"])
async def root():
    """Root endpoint providing API information."""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.PROJECT_VERSION,
        "endpoints": {
            "POST /api/scrape": "Start a scrape run in the background",
            "GET /api/results": "Latest results grouped by product, cheapest first",
            "GET /api/status": "Whether a run is in progress",
            "GET /api/stores": "Configured stores",
            "WS /ws": "Live progress events",
        },
    }


@app.post("/api/scrape", response_model=ScrapeResponse, tags=["Scraping"])
async def start_scrape(
    request: Optional[ScrapeRequest] = Body(None),
    stores: Optional[str] = Query(None, description="Comma-separated store names"),
    store: Optional[str] = Query(None, description="A single store name"),
):
    """Start scraping the selected stores in the background."""
    if state.is_scraping:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Scraping already in progress")

    try:
        config = load_config()
    except ConfigError as e:
        logger.error("Failed to prepare scraping job: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Failed to load configuration or filter supermarkets")

    requested = (request.requested_stores() if request else []) + parse_store_list([stores, store])
    try:
        selected = select_stores(config, requested)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not selected:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="No supermarkets are enabled in the configuration")

    state.is_scraping = True
    state.results = []
    state.task = asyncio.create_task(run_scrape(config, selected))
    return ScrapeResponse(status="started", message="Scraping started")


@app.get("/api/results", response_model=ResultsResponse, tags=["Results"])
async def get_results():
    """Current results grouped by target product, cheapest first."""
    results = state.current_results()
    last_updated = None
    if state.storage is not None:
        try:
            last_updated = state.storage.last_update_time()
        except StorageError as e:
            logger.warning("Could not read last update time: %s", e)

    return {
        "is_scraping": state.is_scraping,
        "results": serialize_grouped(group_results(results)),
        "total_count": len(results),
        "last_updated": last_updated,
    }


@app.get("/api/status", response_model=StatusResponse, tags=["Scraping"])
async def get_status():
    return StatusResponse(is_scraping=state.is_scraping)


@app.get("/api/stores", response_model=List[StoreInfo], tags=["Stores"])
async def get_stores():
    """Configured stores and whether a scraper exists for each."""
    try:
        config = load_config()
    except ConfigError as e:
        logger.error("Failed to load stores: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Failed to load stores")

    return [
        StoreInfo(
            name=store.name,
            base_url=store.base_url,
            enabled=store.enabled,
            supported=ScraperFactory.supports(store.name),
        )
        for store in config.supermarkets
    ]


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            # clients only listen; incoming text is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(_request, exc):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Run with: uvicorn api.main:app --reload
if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.LOG_LEVEL,
                        format="%(asctime)s - %(levelname)s - %(message)s")
    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=True)
