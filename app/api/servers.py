from fastapi import APIRouter, HTTPException, Query

from app.errors import StoreError, TargetNotFoundError
from app.models.status import FleetSnapshot, ProbeResult
from app.models.target import TargetChangeResponse, TargetCreate, TargetUpdate
from app.services import fleet_prober

router = APIRouter()


def _store_unavailable(exc: StoreError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(exc))


def _not_found(exc: TargetNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


@router.get(
    "/servers",
    response_model=FleetSnapshot,
    summary="Status of all configured servers",
)
async def list_servers(
    nocache: bool = Query(False, description="Probe every server instead of using the cached snapshot"),
) -> FleetSnapshot:
    """
    Return the ranked status of every configured server plus aggregate counts.

    Snapshots are cached for Settings.cache_ttl_ms (env var CACHE_TTL_MS).
    If the server list cannot be read, a HTTP 503 is returned.
    """
    try:
        return await fleet_prober.get_fleet_prober().probe_all(use_cache=not nocache)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/server/{target_id}",
    response_model=ProbeResult,
    summary="Status of a single server",
)
async def get_server(target_id: int) -> ProbeResult:
    try:
        return await fleet_prober.get_fleet_prober().probe_one(target_id)
    except TargetNotFoundError as exc:
        raise _not_found(exc) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.post(
    "/servers",
    response_model=TargetChangeResponse,
    summary="Add a server",
)
async def add_server(data: TargetCreate) -> TargetChangeResponse:
    try:
        target = await fleet_prober.get_fleet_prober().add_target(data)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    return TargetChangeResponse(server=target, message=f'Server "{target.name}" added')


@router.put(
    "/server/{target_id}",
    response_model=TargetChangeResponse,
    summary="Update a server",
)
async def update_server(target_id: int, changes: TargetUpdate) -> TargetChangeResponse:
    try:
        target = await fleet_prober.get_fleet_prober().update_target(target_id, changes)
    except TargetNotFoundError as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    return TargetChangeResponse(server=target, message=f'Server "{target.name}" updated')


@router.delete(
    "/server/{target_id}",
    response_model=TargetChangeResponse,
    summary="Delete a server",
)
async def delete_server(target_id: int) -> TargetChangeResponse:
    try:
        target = await fleet_prober.get_fleet_prober().delete_target(target_id)
    except TargetNotFoundError as exc:
        raise _not_found(exc) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    return TargetChangeResponse(server=target, message=f'Server "{target.name}" deleted')


@router.post(
    "/refresh",
    response_model=FleetSnapshot,
    summary="Drop the cache and probe all servers now",
)
async def refresh_servers() -> FleetSnapshot:
    prober = fleet_prober.get_fleet_prober()
    prober.invalidate()
    try:
        return await prober.probe_all(use_cache=False)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
