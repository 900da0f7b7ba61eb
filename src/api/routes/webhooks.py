import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.api.routes.dependencies import (
    commit,
    get_app_settings,
    get_db,
    get_notification_dispatcher,
    get_payment_gateway,
    http_error,
)
from src.application.notifications import NotificationDispatcher
from src.application.webhook_processor import WebhookEventProcessor
from src.config import Settings
from src.domain.exceptions import AuthenticityError, BookingEngineError, PaymentProviderError
from src.infrastructure.payments.stripe_gateway import StripeGateway


router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/api/stripe-webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    gateway: StripeGateway = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    # The signature covers the exact bytes, so read them before any parsing.
    payload = await request.body()
    processor = WebhookEventProcessor(db, gateway, settings)

    try:
        ack = await run_in_threadpool(processor.handle, payload, stripe_signature)
    except PaymentProviderError as exc:
        logger.error("Webhook received but cannot be verified: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        ) from exc
    except AuthenticityError as exc:
        logger.warning("Webhook signature rejected: %s", exc)
        raise http_error(exc) from exc
    except BookingEngineError as exc:
        raise http_error(exc) from exc

    await run_in_threadpool(commit, db)
    if not ack.get("duplicate"):
        background_tasks.add_task(dispatcher.dispatch_pending)
    return ack
