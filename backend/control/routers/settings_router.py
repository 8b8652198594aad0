"""Overlay settings API routes."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from control.core.controller import AlertController
from control.core.dependencies import get_controller
from shared.models.overlay_settings import OverlayPresentationSettings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=OverlayPresentationSettings)
async def get_overlay_settings(controller: AlertController = Depends(get_controller)):
    return controller.settings


@router.patch("", response_model=OverlayPresentationSettings)
async def update_overlay_settings(
    patch: dict[str, Any] = Body(...),
    controller: AlertController = Depends(get_controller),
):
    """Merge a partial settings object; unknown keys are kept for the overlay"""
    try:
        return await controller.update_settings(patch)
    except ValidationError as e:
        logger.warning(f"Rejected settings patch: {e.error_count()} error(s)")
        raise HTTPException(
            status_code=422,
            detail=[{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()],
        ) from e
