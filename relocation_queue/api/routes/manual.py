from fastapi import APIRouter, Depends, status

from relocation_queue.api.errors import to_http_error
from relocation_queue.schemas.queue import ManualRecordIn, ManualRecordOut, RepairOut
from relocation_queue.services.errors import QueueSyncError
from relocation_queue.services.queue_service import QueueService, get_queue_service
from relocation_queue.services.tables import normalize_code

router = APIRouter()


@router.post("", response_model=ManualRecordOut, status_code=status.HTTP_201_CREATED)
async def add_manual_record(
    payload: ManualRecordIn,
    service: QueueService = Depends(get_queue_service),
) -> ManualRecordOut:
    try:
        record_id = await service.add_manual_record(payload.id, payload.location, notes=payload.notes)
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return ManualRecordOut(
        id=normalize_code(payload.id),
        location=normalize_code(payload.location),
        manual_record_id=record_id,
    )


@router.post("/repair", response_model=RepairOut)
async def repair_manual_table(service: QueueService = Depends(get_queue_service)) -> RepairOut:
    try:
        added = await service.repair_manual_table()
    except QueueSyncError as exc:
        raise to_http_error(exc) from exc
    return RepairOut(added_columns=added)
