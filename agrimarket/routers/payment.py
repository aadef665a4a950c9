from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from sqlmodel import Session

from agrimarket.core.responses import success
from agrimarket.db.session import get_session
from agrimarket.services.payment import PaymentGateway, PaymentService, get_payment_gateway

router = APIRouter()

@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    body = await request.body()
    result = PaymentService(session, gateway).handle_webhook(body.decode(), x_razorpay_signature)
    return success(result, "Webhook processed")
