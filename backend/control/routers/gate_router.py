"""Alert gate API routes."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from control.core.controller import AlertController
from control.core.dependencies import get_controller

router = APIRouter(prefix="/api/gate", tags=["gate"])


class GateState(BaseModel):
    is_open: bool


@router.get("", response_model=GateState)
async def get_gate(controller: AlertController = Depends(get_controller)):
    return GateState(is_open=controller.gate.is_open)


@router.put("", response_model=GateState)
async def set_gate(body: GateState, controller: AlertController = Depends(get_controller)):
    return GateState(is_open=await controller.set_gate(body.is_open))


@router.post("/toggle", response_model=GateState)
async def toggle_gate(controller: AlertController = Depends(get_controller)):
    return GateState(is_open=await controller.toggle_gate())
