"""Alert queue API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from control.core.controller import AlertController
from control.core.dependencies import get_controller
from shared.models.alert import AlertCategory, AlertRecord, AlertStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queue", tags=["queue"])


# ============================================
# Response / Request Models
# ============================================


class AlertResponse(BaseModel):
    id: str
    source_username: str
    amount: float
    message: str
    category: AlertCategory
    created_at: float
    status: AlertStatus

    @classmethod
    def from_record(cls, record: AlertRecord) -> "AlertResponse":
        return cls(**record.to_dict())


class QueueResponse(BaseModel):
    gate_open: bool
    queue: list[AlertResponse]
    pending: int
    playing: list[str]


class InjectRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    amount: float = Field(default=100, ge=0)
    message: str = Field(default="", max_length=500)
    category: AlertCategory = AlertCategory.BITS


class InjectResponse(BaseModel):
    accepted: bool
    alert: AlertResponse | None = None
    detail: str | None = None


class CountResponse(BaseModel):
    removed: int


class SkipResponse(BaseModel):
    skipped: list[str]


def _queue_response(controller: AlertController) -> QueueResponse:
    records = controller.store.records
    return QueueResponse(
        gate_open=controller.gate.is_open,
        queue=[AlertResponse.from_record(r) for r in records],
        pending=sum(1 for r in records if r.status is AlertStatus.PENDING),
        playing=[r.id for r in records if r.status is AlertStatus.PLAYING],
    )


# ============================================
# Queue Endpoints
# ============================================


@router.get("", response_model=QueueResponse)
async def get_queue(controller: AlertController = Depends(get_controller)):
    """Full queue in arrival order"""
    return _queue_response(controller)


@router.post("", response_model=InjectResponse)
async def inject_alert(
    body: InjectRequest,
    controller: AlertController = Depends(get_controller),
):
    """Inject a manual test alert (skips the bits minimum, still deduplicated)"""
    record = await controller.ingest(body.model_dump(mode="json"), manual=True)
    if record is None:
        return InjectResponse(accepted=False, detail="Duplicate, filtered or queue full")
    return InjectResponse(accepted=True, alert=AlertResponse.from_record(record))


@router.post("/skip", response_model=SkipResponse)
async def skip_current(controller: AlertController = Depends(get_controller)):
    return SkipResponse(skipped=await controller.skip())


@router.post("/clear", response_model=CountResponse)
async def clear_pending(controller: AlertController = Depends(get_controller)):
    return CountResponse(removed=await controller.clear())


@router.post("/clear-played", response_model=CountResponse)
async def clear_played(controller: AlertController = Depends(get_controller)):
    return CountResponse(removed=await controller.clear_played())


@router.post("/{alert_id}/play", response_model=QueueResponse)
async def force_play(alert_id: str, controller: AlertController = Depends(get_controller)):
    """Play *alert_id* now, out of order"""
    record = controller.store.get(alert_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    if not await controller.force_play(alert_id):
        raise HTTPException(
            status_code=409, detail=f"Alert {alert_id} is {record.status.value}, not pending"
        )
    return _queue_response(controller)


@router.delete("/{alert_id}", response_model=QueueResponse)
async def delete_alert(alert_id: str, controller: AlertController = Depends(get_controller)):
    if not await controller.remove(alert_id):
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    return _queue_response(controller)
