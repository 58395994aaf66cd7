from fastapi import APIRouter, Depends

from relocation_queue.api.errors import to_http_error
from relocation_queue.schemas.queue import (
    ClaimRequest,
    ClaimStateOut,
    CompleteRequest,
    QueueItemOut,
    ReconcileOut,
    ReleaseOut,
)
from relocation_queue.services.errors import QueueSyncError
from relocation_queue.services.queue_service import QueueService, get_queue_service
from relocation_queue.services.records import WorkQueueItem
from relocation_queue.services.temporal import utcnow

router = APIRouter()


def _item_out(item: WorkQueueItem) -> QueueItemOut:
    return QueueItemOut(
        id=item.task_id,
        location=item.location,
        hours_remaining=item.hours_remaining,
        type=item.type,
        shift=item.shift,
        origin=item.origin,
        claim=ClaimStateOut(
            claimed_by=item.claim.claimed_by,
            claim_time=item.claim.claim_time,
            new_location=item.claim.new_location,
            notes=item.claim.notes,
            claimed=item.claim.derived_claimed,
            arrival_time=item.claim.arrival_time,
        ),
    )


@router.get("", response_model=list[QueueItemOut])
async def list_queue(service: QueueService = Depends(get_queue_service)) -> list[QueueItemOut]:
    try:
        items = await service.list_queue()
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return [_item_out(item) for item in items]


@router.post("/reconcile", response_model=ReconcileOut)
async def reconcile(service: QueueService = Depends(get_queue_service)) -> ReconcileOut:
    ran_at = utcnow()
    try:
        written = await service.reconcile(now=ran_at)
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return ReconcileOut(tasks_written=written, ran_at=ran_at)


@router.post("/release-stale-leases", response_model=ReleaseOut)
async def release_stale_leases(service: QueueService = Depends(get_queue_service)) -> ReleaseOut:
    ran_at = utcnow()
    try:
        released = await service.release_stale_leases(now=ran_at)
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return ReleaseOut(released=released, ran_at=ran_at)


@router.post("/{task_id}/claim", response_model=QueueItemOut)
async def claim_task(
    task_id: str,
    payload: ClaimRequest,
    service: QueueService = Depends(get_queue_service),
) -> QueueItemOut:
    try:
        item = await service.claim_task(task_id, payload.operator)
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return _item_out(item)


@router.post("/{task_id}/complete", response_model=QueueItemOut)
async def complete_task(
    task_id: str,
    payload: CompleteRequest,
    service: QueueService = Depends(get_queue_service),
) -> QueueItemOut:
    try:
        item = await service.complete_task(task_id, payload.new_location, notes=payload.notes)
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return _item_out(item)
