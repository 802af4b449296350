"""Operator alert probe."""

from typing import Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel

from relay.routers.admin import _require_admin_token
from relay.services.alert_service import send_alert

router = APIRouter(tags=["alerts"])


class AlertTestResponse(BaseModel):
    success: bool
    message: str


@router.post("/alerts/test", response_model=AlertTestResponse)
def alerts_test(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")):
    _require_admin_token(x_admin_token)
    sent = send_alert("INFO", "Alerts test", {"source": "alerts.test"})
    if sent:
        return AlertTestResponse(success=True, message="Alert sent")
    return AlertTestResponse(success=False, message="Alert not sent (check ALERT_BOT_TOKEN/ALERT_CHAT_ID)")
