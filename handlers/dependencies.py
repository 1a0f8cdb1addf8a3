# handlers/dependencies.py
"""FastAPI-залежності: сервіси живуть в app.state і створюються в lifespan."""
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from services.catalog_service import SheetsCatalog
from services.delivery_service import NovaPoshtaClient
from services.order_service import OrderService
from services.payment_service import PaymentVerifier
from services.rate_service import TonRateService


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


def get_payment_verifier(request: Request) -> PaymentVerifier:
    return request.app.state.payment_verifier


def get_catalog(request: Request) -> SheetsCatalog:
    return request.app.state.catalog


def get_rate_service(request: Request) -> TonRateService:
    return request.app.state.rate_service


def get_np_client(request: Request) -> NovaPoshtaClient:
    return request.app.state.np_client


def require_admin(request: Request, x_admin_token: Optional[str] = Header(default=None)) -> None:
    expected = getattr(request.app.state, "admin_token", None)
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API disabled")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
