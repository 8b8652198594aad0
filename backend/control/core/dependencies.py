"""Dependency injection utilities for FastAPI"""

import logging

from fastapi import HTTPException, Request

from control.core.controller import AlertController

logger = logging.getLogger(__name__)


def get_controller(request: Request) -> AlertController:
    """Return the controller created in the app lifespan."""
    controller: AlertController | None = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Controller not ready")
    return controller
