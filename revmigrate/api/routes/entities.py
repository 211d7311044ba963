"""Read endpoints for revisioned entities."""

from fastapi import APIRouter, Depends, HTTPException, Query

from ...errors import InvalidStateError
from ...models.entities import EntityKind
from ...services.revisions import RevisionEngine
from ..dependencies import get_revision_engine
from ..models import RevisionListResponse, RevisionResponse

router = APIRouter()


def _versioned_kind(kind: str) -> EntityKind:
    try:
        entity_kind = EntityKind.from_table(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown entity kind: {kind}")
    if not entity_kind.versioned:
        raise HTTPException(status_code=400, detail=f"{entity_kind.value} is not a versioned entity kind")
    return entity_kind


@router.get("/{kind}", response_model=RevisionListResponse)
def list_current(
    kind: str,
    include_deleted: bool = False,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    engine: RevisionEngine = Depends(get_revision_engine),
):
    """List current revisions, newest first."""
    entity_kind = _versioned_kind(kind)
    revisions = engine.list_current(entity_kind, include_deleted=include_deleted, limit=limit, offset=offset)
    return RevisionListResponse(
        kind=entity_kind.value,
        revisions=[RevisionResponse.from_revision(r) for r in revisions],
        total=len(revisions),
    )


@router.get("/{kind}/{entity_id}", response_model=RevisionResponse)
def get_entity(
    kind: str,
    entity_id: str,
    include_deleted: bool = False,
    engine: RevisionEngine = Depends(get_revision_engine),
):
    """Get the current revision of an entity."""
    entity_kind = _versioned_kind(kind)
    try:
        if include_deleted:
            revision = engine.get_current_including_deleted(entity_kind, entity_id)
        else:
            revision = engine.get_current(entity_kind, entity_id)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=e.message)

    if revision is None:
        raise HTTPException(status_code=404, detail=f"{entity_kind.value} {entity_id} not found")
    return RevisionResponse.from_revision(revision)


@router.get("/{kind}/{entity_id}/history", response_model=RevisionListResponse)
def get_history(
    kind: str,
    entity_id: str,
    engine: RevisionEngine = Depends(get_revision_engine),
):
    """Get every revision of an entity, newest first."""
    entity_kind = _versioned_kind(kind)
    try:
        revisions = engine.get_history(entity_kind, entity_id)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=e.message)

    if not revisions:
        raise HTTPException(status_code=404, detail=f"{entity_kind.value} {entity_id} not found")
    return RevisionListResponse(
        kind=entity_kind.value,
        revisions=[RevisionResponse.from_revision(r) for r in revisions],
        total=len(revisions),
    )
