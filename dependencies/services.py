"""
Service dependencies
Collaborators are built once in the application lifespan and kept on
app.state; routers reach them only through these functions.
"""
from fastapi import HTTPException, Request, status

from services.payment_service import PaymentOrchestrator
from services.reminder_service import ReminderScheduler


def _from_state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up, try again shortly",
        )
    return service


def get_payment_orchestrator(request: Request) -> PaymentOrchestrator:
    return _from_state(request, "payments")


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    return _from_state(request, "reminders")
