"""Order routes."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cardmarket.auth import get_current_user
from cardmarket.database import get_db
from cardmarket.errors import ValidationError
from cardmarket.models import User
from cardmarket.services.orders import (
    ROLE_BUYER,
    ROLE_SELLER,
    complete_by_buyer,
    confirm_pickup,
    get_order_for_user,
    orders_for_user,
    submit_shipping_address,
)

router = APIRouter()


class ShippingAddressRequest(BaseModel):
    # All optional here so the service reports every missing field at once.
    name: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None


@router.get("")
async def list_orders(
    role: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List the caller's orders (optionally only as 'buyer' or 'seller')."""
    if role is not None and role not in (ROLE_BUYER, ROLE_SELLER):
        raise ValidationError("role must be 'buyer' or 'seller'")
    return {"orders": [order.to_dict() for order in orders_for_user(db, user.id, role)]}


@router.get("/{order_id}")
async def get_order(order_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"order": get_order_for_user(db, order_id, user.id).to_dict()}


@router.post("/{order_id}/shipping-address")
async def set_shipping_address(
    order_id: str,
    body: ShippingAddressRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = submit_shipping_address(db, order_id, user, body.model_dump())
    return {"success": True, "order": order.to_dict()}


@router.post("/{order_id}/confirm-pickup")
async def confirm_order_pickup(order_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Buyer or seller confirms the local hand-over; both confirmations complete the order."""
    order = confirm_pickup(db, order_id, user)
    return {
        "success": True,
        "pickupCompleted": order.buyer_pickup_confirmed and order.seller_pickup_confirmed,
        "order": order.to_dict(),
    }


@router.post("/{order_id}/complete")
async def complete_order(order_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    order = complete_by_buyer(db, order_id, user)
    return {"success": True, "message": "Order completed successfully", "order": order.to_dict()}
