"""
FastAPI application exposing boards and the item lifecycle engine.

Identity is opaque: callers pass ``X-User-Identity`` (and ``X-Voter-Token``
for votes). Engine rejections map to HTTP status codes:

- ItemNotFoundError / BoardNotFoundError -> 404
- PermissionDeniedError -> 403
- VersionConflictError -> 409
- InvalidOperationError -> 422
- PersistenceError -> 503
- HistoryMismatchError -> 500
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from . import __version__
from .db.base import get_db, init_database
from .engine.enums import Stage
from .engine.errors import (
    BoardError,
    BoardNotFoundError,
    HistoryMismatchError,
    InvalidOperationError,
    ItemNotFoundError,
    PermissionDeniedError,
    PersistenceError,
    VersionConflictError,
)
from .engine.filters import ItemFilter
from .engine import history
from .engine.models import Attachment
from .engine.primitives import Thresholds
from .feed import ChangeFeed
from .services import BoardService

logger = structlog.get_logger()

# Process-wide change feed; every write made through the API is published here.
change_feed = ChangeFeed()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting Idea Board")
    try:
        init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise
    yield
    logger.info("Shutting down Idea Board")


app = FastAPI(
    title="Idea Board",
    description="Collaborative voting board with automatic stage transitions",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_STATUS_BY_ERROR = [
    (ItemNotFoundError, 404),
    (BoardNotFoundError, 404),
    (PermissionDeniedError, 403),
    (VersionConflictError, 409),
    (InvalidOperationError, 422),
    (PersistenceError, 503),
    (HistoryMismatchError, 500),
]


@app.exception_handler(BoardError)
async def board_error_handler(request: Request, exc: BoardError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    logger.info("request_rejected", path=request.url.path, code=exc.code, status=status)
    return JSONResponse(status_code=status, content=exc.to_dict())


def get_feed() -> ChangeFeed:
    return change_feed


def get_service(
    db: Session = Depends(get_db), feed: ChangeFeed = Depends(get_feed)
) -> BoardService:
    return BoardService(db, feed=feed)


def identity_header(x_user_identity: str = Header("Anonymous")) -> str:
    return x_user_identity.strip() or "Anonymous"


# Request schemas


class BoardCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=256)
    slug: str = Field(..., min_length=1, max_length=128, pattern=r"^[a-z0-9][a-z0-9-]*$")
    item_type: str = "idea"
    thresholds: Optional[Thresholds] = None
    admins: List[str] = Field(default_factory=list)


class ItemCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=512)
    description: Optional[str] = Field(None, max_length=16000)


class VoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    direction: int = Field(..., description="+1 or -1")


class MoveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stage: Stage
    reason: Optional[str] = None


class CommentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., min_length=1, max_length=16000)
    attachments: List[Attachment] = Field(default_factory=list)
    reply_to: Optional[str] = None


class ChecklistCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., min_length=1, max_length=1000)


# System


@app.get("/health", tags=["system"])
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> Dict[str, str]:
    return {"version": __version__}


# Boards


@app.post("/boards", status_code=201, tags=["boards"])
async def create_board(
    board: BoardCreate, service: BoardService = Depends(get_service)
) -> Dict[str, Any]:
    created = service.create_board(
        board.name,
        board.slug,
        thresholds=board.thresholds,
        admins=board.admins,
        item_type=board.item_type,
    )
    return created.to_dict()


@app.get("/boards/{board_id}", tags=["boards"])
async def get_board(board_id: str, service: BoardService = Depends(get_service)) -> Dict[str, Any]:
    return service.get_board(board_id).to_dict()


# Items


@app.get("/boards/{board_id}/items", tags=["items"])
async def list_items(
    board_id: str,
    stage: Optional[Stage] = None,
    blocked: bool = Query(False, description="Only items in roadblock"),
    creator: Optional[str] = None,
    assignee: Optional[str] = None,
    q: Optional[str] = Query(None, description="Search title and description"),
    mine: bool = Query(False, description="Only items created by the caller"),
    assigned_to_me: bool = Query(False, description="Only items assigned to the caller"),
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> List[Dict[str, Any]]:
    item_filter = ItemFilter(
        stage=stage,
        blocked=blocked,
        creator=identity if mine else creator,
        assignee=identity if assigned_to_me else assignee,
        text=q,
    )
    return [i.model_dump(mode="json") for i in service.list_items(board_id, item_filter=item_filter)]


@app.post("/boards/{board_id}/items", status_code=201, tags=["items"])
async def create_item(
    board_id: str,
    body: ItemCreate,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item = service.create_item(board_id, body.title, identity, description=body.description)
    return item.model_dump(mode="json")


@app.get("/boards/{board_id}/items/{item_id}", tags=["items"])
async def get_item(
    board_id: str, item_id: str, service: BoardService = Depends(get_service)
) -> Dict[str, Any]:
    return service.get_item(board_id, item_id).model_dump(mode="json")


@app.delete("/boards/{board_id}/items/{item_id}", tags=["items"])
async def delete_item(
    board_id: str,
    item_id: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item = service.delete_item(board_id, item_id, identity)
    return {"status": "deleted", "item_id": item.id}


@app.post("/boards/{board_id}/items/{item_id}/votes", tags=["items"])
async def vote(
    board_id: str,
    item_id: str,
    body: VoteRequest,
    identity: str = Depends(identity_header),
    x_voter_token: Optional[str] = Header(None),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    result = service.vote(board_id, item_id, x_voter_token or identity, body.direction, identity)
    transition = result.auto_transition
    return {
        "item": result.item.model_dump(mode="json"),
        "delta": result.delta,
        "kind": result.kind.value,
        "auto_transition": (
            {
                "from": transition.from_stage.value,
                "to": transition.to_stage.value,
                "reason": transition.reason,
            }
            if transition
            else None
        ),
    }


@app.post("/boards/{board_id}/items/{item_id}/move", tags=["items"])
async def move(
    board_id: str,
    item_id: str,
    body: MoveRequest,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item = service.move(board_id, item_id, body.stage, identity, reason=body.reason)
    return item.model_dump(mode="json")


@app.post("/boards/{board_id}/items/{item_id}/comments", status_code=201, tags=["items"])
async def add_comment(
    board_id: str,
    item_id: str,
    body: CommentCreate,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item = service.comment(
        board_id, item_id, identity, body.text, attachments=body.attachments, reply_to=body.reply_to
    )
    return item.model_dump(mode="json")


@app.put("/boards/{board_id}/items/{item_id}/watchers", tags=["items"])
async def watch(
    board_id: str,
    item_id: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    return service.watch(board_id, item_id, identity).model_dump(mode="json")


@app.delete("/boards/{board_id}/items/{item_id}/watchers", tags=["items"])
async def unwatch(
    board_id: str,
    item_id: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    return service.unwatch(board_id, item_id, identity).model_dump(mode="json")


@app.put("/boards/{board_id}/items/{item_id}/assignees/{assignee}", tags=["items"])
async def assign(
    board_id: str,
    item_id: str,
    assignee: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    return service.assign(board_id, item_id, assignee, identity).model_dump(mode="json")


@app.delete("/boards/{board_id}/items/{item_id}/assignees/{assignee}", tags=["items"])
async def unassign(
    board_id: str,
    item_id: str,
    assignee: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    return service.unassign(board_id, item_id, assignee, identity).model_dump(mode="json")


@app.post("/boards/{board_id}/items/{item_id}/checklist", status_code=201, tags=["items"])
async def add_checklist_item(
    board_id: str,
    item_id: str,
    body: ChecklistCreate,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    return service.add_checklist_item(board_id, item_id, body.text, identity).model_dump(mode="json")


@app.post("/boards/{board_id}/items/{item_id}/checklist/{checklist_id}/toggle", tags=["items"])
async def toggle_checklist_item(
    board_id: str,
    item_id: str,
    checklist_id: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item = service.toggle_checklist_item(board_id, item_id, checklist_id, identity)
    return item.model_dump(mode="json")


@app.delete("/boards/{board_id}/items/{item_id}/checklist/{checklist_id}", tags=["items"])
async def remove_checklist_item(
    board_id: str,
    item_id: str,
    checklist_id: str,
    identity: str = Depends(identity_header),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item = service.remove_checklist_item(board_id, item_id, checklist_id, identity)
    return item.model_dump(mode="json")


@app.get("/boards/{board_id}/items/{item_id}/history", tags=["items"])
async def item_history(
    board_id: str,
    item_id: str,
    newest_first: bool = Query(False, description="Return entries newest first"),
    service: BoardService = Depends(get_service),
) -> Dict[str, Any]:
    item, state = service.history(board_id, item_id)
    cached = history.ReplayState(
        score=item.score, stage=item.stage, blocked_reason=item.blocked_reason
    )
    entries = history.newest_first(item.history) if newest_first else history.ordered(item.history)
    return {
        "item_id": item.id,
        "entries": [e.model_dump(mode="json") for e in entries],
        "replay": {
            "score": state.score,
            "stage": state.stage.value,
            "blocked_reason": state.blocked_reason,
            "consistent": state == cached,
        },
    }


# Change feed


@app.websocket("/boards/{board_id}/feed")
async def board_feed(websocket: WebSocket, board_id: str) -> None:
    """Push every change on the board to the connected client until it leaves."""
    # Subscribe before accepting so nothing published after the handshake is missed.
    subscription = change_feed.subscribe(board_id)
    await websocket.accept()
    log = logger.bind(board_id=board_id)
    log.info("feed_client_connected")

    async def forward() -> None:
        async for event in subscription:
            await websocket.send_json(event.model_dump(mode="json"))

    forwarder = asyncio.create_task(forward())
    try:
        while True:
            # Client messages carry nothing; reading them detects the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        log.info("feed_client_disconnected")
