"""
Memory router.

POST   /memory          - store (or reinforce) a memory
GET    /memory          - list memories (paginated, newest first)
GET    /memory/stats    - counts by type, average confidence
POST   /memory/decay    - apply time decay now
POST   /memory/prune    - drop expired, low-confidence and overflow memories
DELETE /memory/{id}     - delete one memory
DELETE /memory          - delete every memory for the user
"""
from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from nudgegate.core.auth import get_user_id
from nudgegate.db.base import get_db
from nudgegate.models.user_memory import MemoryType, UserMemory
from nudgegate.schemas.common import CountResponse, ErrorResponse
from nudgegate.schemas.memory import (
    MemoryCreateRequest,
    MemoryListResponse,
    MemoryResponse,
    MemoryStatsResponse,
)
from nudgegate.services.memory import (
    apply_memory_decay,
    delete_all_memories,
    delete_memory,
    list_memories,
    memory_stats,
    prune_memories,
    store_memory,
)

router = APIRouter(prefix="/memory", tags=["memory"])


# ---------------------------------------------------------------------------
# Serialization helper
# ---------------------------------------------------------------------------

def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _memory_to_response(memory: UserMemory, reinforced: bool = False) -> MemoryResponse:
    return MemoryResponse(
        id=memory.id,
        memory_type=memory.memory_type,
        content=memory.content,
        context=json.loads(memory.context) if memory.context else None,
        confidence=memory.confidence,
        evidence_count=memory.evidence_count,
        decay_rate=memory.decay_rate,
        source_protocol_id=memory.source_protocol_id,
        source_nudge_id=memory.source_nudge_id,
        created_at=memory.created_at.isoformat() if memory.created_at else "",
        last_used_at=_iso(memory.last_used_at),
        last_decayed_at=_iso(memory.last_decayed_at),
        expires_at=_iso(memory.expires_at),
        reinforced=reinforced,
    )


# ---------------------------------------------------------------------------
# POST /memory
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=MemoryResponse,
    summary="Store a memory (reinforces a near-duplicate instead of inserting)",
    responses={
        200: {"description": "An existing memory was reinforced."},
        201: {"description": "A new memory was stored."},
        422: {"model": ErrorResponse, "description": "Unknown memory type or bad values."},
    },
)
def create_memory(
    payload: MemoryCreateRequest,
    response: Response,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    A memory of the same type whose content contains the first 50 characters
    of the new content (case-insensitive) is reinforced: confidence moves 10%
    of the way to 1.0 (capped at 0.95) and evidence_count grows by one.
    """
    memory, created = store_memory(
        db,
        user_id,
        payload.memory_type.value,
        payload.content,
        context=payload.context,
        confidence=payload.confidence,
        decay_rate=payload.decay_rate,
        source_protocol_id=payload.source_protocol_id,
        source_nudge_id=payload.source_nudge_id,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return _memory_to_response(memory, reinforced=not created)


# ---------------------------------------------------------------------------
# GET /memory
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=MemoryListResponse,
    summary="List memories (paginated, newest first)",
)
def read_memories(
    memory_type: Optional[MemoryType] = Query(default=None, description="Filter by type."),
    limit: int = Query(default=50, ge=1, le=200, description="Page size."),
    offset: int = Query(default=0, ge=0, description="Skip N items."),
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    total, items = list_memories(
        db, user_id,
        memory_type=memory_type.value if memory_type else None,
        limit=limit,
        offset=offset,
    )
    return MemoryListResponse(total=total, items=[_memory_to_response(m) for m in items])


@router.get("/stats", response_model=MemoryStatsResponse, summary="Memory statistics")
def read_memory_stats(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return MemoryStatsResponse(**memory_stats(db, user_id))


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

@router.post(
    "/decay",
    response_model=CountResponse,
    summary="Apply confidence decay",
)
def decay(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """
    `confidence x (1 - decay_rate) ^ weeks` since the last decay. Memories
    decayed within the last 24 hours are skipped, so repeated calls are safe.
    """
    return CountResponse(count=apply_memory_decay(db, user_id))


@router.post(
    "/prune",
    response_model=CountResponse,
    summary="Remove expired, weak and overflow memories",
)
def prune(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return CountResponse(count=prune_memories(db, user_id))


# ---------------------------------------------------------------------------
# DELETE
# ---------------------------------------------------------------------------

@router.delete(
    "/{memory_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete one memory",
    responses={
        404: {"model": ErrorResponse, "description": "Memory not found for this user."},
    },
)
def remove_memory(
    memory_id: int,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    delete_memory(db, user_id, memory_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "",
    response_model=CountResponse,
    summary="Delete all memories for the user",
)
def remove_all_memories(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return CountResponse(count=delete_all_memories(db, user_id))
