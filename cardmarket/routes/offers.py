"""Offer routes."""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from cardmarket.auth import enforce_offer_rate_limit, get_current_user
from cardmarket.database import get_db
from cardmarket.models import User
from cardmarket.services.offers import OfferService
from cardmarket.services.orders import create_order_from_offer

router = APIRouter()


class ShippingAddress(BaseModel):
    name: str
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    postalCode: str
    country: str


class OfferCreateRequest(BaseModel):
    # Loosely typed on purpose: the service produces the error messages.
    listingId: Any = None
    sellerId: Optional[str] = None
    amount: Any = None
    # Accepted for compatibility; the stored snapshot is always rebuilt from the listing.
    listingSnapshot: Optional[dict] = None
    expirationHours: Optional[int] = None
    isPickup: bool = False
    requiresShippingInfo: bool = False
    shippingAddress: Optional[ShippingAddress] = None


class OfferActionRequest(BaseModel):
    action: str
    counterAmount: Any = None


class CreateOrderRequest(BaseModel):
    offerId: int
    markAsSold: bool = False


@router.post("/create-secure", status_code=201)
async def create_offer(
    body: OfferCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(enforce_offer_rate_limit),
):
    """Submit an offer; price ceiling and snapshot are verified against the stored listing."""
    offer = OfferService(db).create_offer(
        buyer=user,
        listing_id=body.listingId,
        seller_id=body.sellerId,
        amount=body.amount,
        expiration_hours=body.expirationHours,
        is_pickup=body.isPickup,
        requires_shipping_info=body.requiresShippingInfo,
        shipping_address=body.shippingAddress.model_dump() if body.shippingAddress else None,
    )
    return {"success": True, "offerId": offer.id, "message": "Offer created successfully"}


@router.post("/create-order")
async def create_order(
    body: CreateOrderRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    order = create_order_from_offer(db, body.offerId, user, mark_as_sold=body.markAsSold)
    return {"success": True, "orderId": order.id, "order": order.to_dict()}


@router.post("/clear-expired")
async def clear_expired_offers(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Delete the caller's expired and declined offers."""
    deleted = OfferService(db).clear_expired(user)
    return {"success": True, "deletedCount": deleted}


@router.get("")
async def list_offers(
    role: str = "buyer",
    includeCleared: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    List the caller's offers.

    Args:
        role: 'buyer' for offers made, 'seller' for offers received
    """
    offers = OfferService(db).list_for_user(user, role=role, include_cleared=includeCleared)
    return {"offers": [offer.to_dict() for offer in offers]}


@router.get("/{offer_id}")
async def get_offer(offer_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    offer = OfferService(db).get_offer_for_user(offer_id, user)
    return {"offer": offer.to_dict()}


@router.post("/{offer_id}/respond")
async def respond_to_offer(
    offer_id: int,
    body: OfferActionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Seller: accept / decline / counter. Buyer: cancel / accept_counter / decline_counter."""
    offer = OfferService(db).respond(offer_id, user, body.action, counter_amount=body.counterAmount)
    return {"success": True, "offer": offer.to_dict()}


@router.post("/{offer_id}/clear")
async def clear_offer(offer_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    offer = OfferService(db).dismiss(offer_id, user)
    return {"success": True, "offer": offer.to_dict()}
