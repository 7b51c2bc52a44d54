"""Harvest routes: single-source scrapes, aggregate reports and the source table."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from equine_agent.core.enums import OutcomeStatus, RecordKind
from equine_agent.ingestion.registry import SourceRegistry
from equine_agent.ingestion.scheduler import Scheduler

router = APIRouter(tags=["harvest"])

# Query parameters consumed by the routes themselves, never forwarded to sources
_RESERVED_PARAMS = {"sources", "kinds", "timeout"}


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _request_params(request: Request) -> dict[str, str]:
    return {k: v for k, v in request.query_params.items() if k not in _RESERVED_PARAMS}


@router.get("/scrape/{source}/{kind}")
async def scrape(source: str, kind: str, request: Request) -> JSONResponse:
    """
    Harvest one record kind from one source.

    Query parameters are passed to the source's endpoint templates.
    Identities are resolved within this source only.
    """
    registry: SourceRegistry = request.app.state.registry
    scheduler: Scheduler = request.app.state.scheduler

    descriptor = registry.get_source(source)
    if descriptor is None:
        raise HTTPException(status_code=404, detail=f"Unknown source '{source}'")
    try:
        record_kind = RecordKind.parse(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown record kind '{kind}'")
    if not descriptor.supports(record_kind):
        raise HTTPException(
            status_code=404,
            detail=f"Source '{descriptor.name}' does not supply {record_kind.value}",
        )

    if descriptor.requires_auth:
        return JSONResponse({
            "success": False,
            "data": [],
            "count": 0,
            "error": f"Source '{descriptor.name}' requires authentication",
        })

    orchestrator = scheduler.orchestrator_for(descriptor, resolve_locally=True)
    outcome = await orchestrator.run(record_kind, _request_params(request))

    if outcome.status == OutcomeStatus.HARD_FAILURE:
        return JSONResponse({
            "success": False,
            "data": [],
            "count": 0,
            "error": outcome.error,
            "attempts": [
                {"url": a.url, "attempt": a.attempt, "status_code": a.status_code, "error": a.error}
                for a in outcome.attempts
            ],
        })

    data = [record.model_dump(mode="json") for record in outcome.records]
    body = {
        "success": True,
        "data": data,
        "count": len(data),
        "status": outcome.status.value,
        "excluded": [row.model_dump(mode="json") for row in outcome.excluded],
        "notes": list(outcome.notes),
        "row_errors": [{"row_index": e.row_index, "message": e.message} for e in outcome.row_errors],
    }
    return JSONResponse(body)


@router.get("/report")
async def report(
    request: Request,
    sources: str = "",
    kinds: str = "",
    timeout: float | None = None,
) -> JSONResponse:
    """Harvest several sources concurrently and return the aggregate report."""
    scheduler: Scheduler = request.app.state.scheduler

    selected_kinds = _split(kinds) or None
    for kind in selected_kinds or []:
        try:
            RecordKind.parse(kind)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown record kind '{kind}'")

    aggregate = await scheduler.run_all(
        source_names=_split(sources) or None,
        kinds=selected_kinds,
        params=_request_params(request),
        timeout=timeout,
    )
    return JSONResponse(aggregate.to_dict())


@router.get("/sources")
async def list_sources(request: Request) -> JSONResponse:
    """Configured source descriptors."""
    registry: SourceRegistry = request.app.state.registry
    return JSONResponse({
        "sources": [source.to_dict() for source in registry.list_sources()],
    })
