import os
import logging
from pathlib import Path
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import asyncio
from dotenv import load_dotenv

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
import httpx

from .index import CodeSearchIndex
from .models import (
    DispatchResponse,
    OrderEntryState,
    SearchRequest,
    SearchResponse,
    SelectOption,
    SystemActionsRequest,
    TriggerInfo,
)
from .search_service import SearchService
from . import clients, terminology, triggers


# Load environment variables
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")

SEARCH_RESULT_LIMIT = int(os.getenv("PAMA_SEARCH_RESULT_LIMIT", "50"))
SEARCH_DEBOUNCE_MS = int(os.getenv("PAMA_SEARCH_DEBOUNCE_MS", "200"))
DEFAULT_OPTION_LIMIT = int(os.getenv("PAMA_DEFAULT_OPTION_LIMIT", "10"))
PROCEDURE_VALUESET_URL = os.getenv("PAMA_PROCEDURE_VALUESET_URL", "")
REASON_VALUESET_URL = os.getenv("PAMA_REASON_VALUESET_URL", "")

# Logging
logger = logging.getLogger("pama_order_support")
# enable a config:
if not logger.handlers:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


# Lightweight retry helper for flaky terminology servers
async def _with_retry(fn, session, url, attempts: int = 2, base_delay: float = 0.5):
    """
    Calls one client function (like clients.fetch_value_set) with small retries.
    Retries on timeouts, connect errors, and 5xx server errors.
    """
    for i in range(attempts):
        try:
            return await fn(session, url)
        except httpx.HTTPStatusError as e:
            # retry on 5xx only
            if 500 <= e.response.status_code < 600 and i < attempts - 1:
                await asyncio.sleep(base_delay * (2 ** i))
                continue
            raise
        except (httpx.TimeoutException, httpx.ConnectError):
            if i < attempts - 1:
                await asyncio.sleep(base_delay * (2 ** i))
                continue
            raise
    return []


async def _load_terminologies():
    """Procedure and reason codings, from a FHIR server when configured, else bundled files."""
    if not (PROCEDURE_VALUESET_URL or REASON_VALUESET_URL):
        return terminology.load_procedure_codings(), terminology.load_reason_codings()

    async with httpx.AsyncClient(timeout=15) as session:
        async def _one(url, fallback):
            if not url:
                return fallback()
            logger.info(f"fetching ValueSet expansion from {url}")
            return await _with_retry(clients.fetch_value_set, session, url, attempts=2, base_delay=0.5)

        return await asyncio.gather(
            _one(PROCEDURE_VALUESET_URL, terminology.load_procedure_codings),
            _one(REASON_VALUESET_URL, terminology.load_reason_codings),
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Terminology or index failures propagate: the service must not start without its indexes.
    procedures, reasons = await _load_terminologies()
    app.state.procedure_codings = procedures
    app.state.reason_codings = reasons
    app.state.procedure_index = CodeSearchIndex.build(procedures)
    app.state.reason_index = CodeSearchIndex.build(reasons)
    app.state.search_service = SearchService(limit=SEARCH_RESULT_LIMIT, wait=SEARCH_DEBOUNCE_MS / 1000)
    app.state.trigger_handlers = triggers.build_trigger_handlers()
    logger.info(
        f"ready procedures={len(app.state.procedure_index)} reasons={len(app.state.reason_index)} "
        f"triggers={sorted(app.state.trigger_handlers)}"
    )
    yield


# FastAPI setup
app = FastAPI(title="PAMA Order Support", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _index(request: Request, name: str) -> CodeSearchIndex:
    index: Optional[CodeSearchIndex] = getattr(request.app.state, name, None)
    if index is None:
        raise HTTPException(status_code=503, detail="code index unavailable")
    return index


def _session(req: SearchRequest, request: Request) -> str:
    """Typing session: request body, then X-Session-Id header, then client address."""
    if req.session:
        return req.session
    header = request.headers.get("x-session-id")
    if header:
        return header
    return request.client.host if request.client else "anonymous"


def _handler(request: Request, trigger_point: str) -> triggers.PamaTriggerHandler:
    handlers = getattr(request.app.state, "trigger_handlers", {})
    handler = handlers.get(trigger_point)
    if handler is None:
        raise HTTPException(status_code=404, detail=f"unknown trigger point {trigger_point!r}")
    return handler


# Typeahead search endpoints
@app.post("/search/procedures", response_model=SearchResponse)
async def search_procedures(req: SearchRequest, request: Request):
    options = await request.app.state.search_service.search(
        req.query, _index(request, "procedure_index"), session=_session(req, request)
    )
    return SearchResponse(options=options)


@app.post("/search/reasons", response_model=SearchResponse)
async def search_reasons(req: SearchRequest, request: Request):
    options = await request.app.state.search_service.search(
        req.query, _index(request, "reason_index"), session=_session(req, request)
    )
    return SearchResponse(options=options)


# Options shown before anything is typed
@app.get("/options/procedures", response_model=List[SelectOption])
def procedure_options(request: Request, limit: int = DEFAULT_OPTION_LIMIT):
    _index(request, "procedure_index")
    return terminology.default_options(request.app.state.procedure_codings, limit)


@app.get("/options/reasons", response_model=List[SelectOption])
def reason_options(request: Request, limit: int = DEFAULT_OPTION_LIMIT):
    _index(request, "reason_index")
    return terminology.default_options(request.app.state.reason_codings, limit)


# CDS Hooks trigger endpoints; dispatched actions are returned to the caller
@app.get("/triggers", response_model=List[TriggerInfo])
def list_triggers(request: Request):
    return [
        TriggerInfo(name=name, need_explicit_trigger=h.need_explicit_trigger)
        for name, h in request.app.state.trigger_handlers.items()
    ]


@app.post("/triggers/{trigger_point:path}/system-actions", response_model=DispatchResponse)
def trigger_system_actions(trigger_point: str, body: SystemActionsRequest, request: Request):
    handler = _handler(request, trigger_point)
    dispatched = []
    handler.on_system_actions(body.actions, state=None, dispatch=dispatched.append)
    return DispatchResponse(dispatched=dispatched)


@app.post("/triggers/{trigger_point:path}/message", response_model=DispatchResponse)
def trigger_message(trigger_point: str, request: Request, message: Dict[str, Any] = Body(...)):
    # unrecognized or malformed messages are ignored, not rejected
    handler = _handler(request, trigger_point)
    dispatched = []
    handler.on_message(message, dispatch=dispatched.append)
    return DispatchResponse(dispatched=dispatched)


@app.post("/triggers/{trigger_point:path}/context")
def trigger_context(trigger_point: str, state: OrderEntryState, request: Request):
    return _handler(request, trigger_point).generate_context(state)


# Health check endpoint
@app.get("/health")
def health(request: Request):
    state = request.app.state
    return {
        "procedures": len(getattr(state, "procedure_index", None) or []),
        "reasons": len(getattr(state, "reason_index", None) or []),
        "triggers": sorted(getattr(state, "trigger_handlers", {})),
    }
