import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..campaigns import confirm_payment
from ..db import get_db
from ..errors import NotFoundError
from ..schemas import PaymentWebhookIn
from .deps import require_webhook_secret

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(require_webhook_secret)],
)


@router.post("/payment")
def payment_webhook(body: PaymentWebhookIn, db: Session = Depends(get_db)):
    """Payment notification from the gateway, authenticated by the shared secret header.

    Once authenticated it is always acknowledged so the gateway stops redelivering.
    """
    try:
        campaign = confirm_payment(db, body.campaign_id, body.status)
    except NotFoundError as e:
        logger.error(f"Payment webhook for unknown campaign: {e.message}")
        return {"received": True}
    return {"received": True, "campaign_status": campaign.status.value}
