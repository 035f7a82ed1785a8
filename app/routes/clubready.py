from fastapi import APIRouter, Depends

from app.deps.clubready import get_checkout_service
from app.schemas.customer import ContactIn
from app.schemas.payment import ChargeIn
from app.services.checkout_service import CheckoutService


router = APIRouter(prefix="/clubready", tags=["clubready"])


@router.post("/customers/resolve")
def resolve_customer(
    payload: ContactIn,
    service: CheckoutService = Depends(get_checkout_service),
):
    return service.find_or_create_customer(payload)


@router.post("/customers/search")
def search_customer(
    payload: ContactIn,
    service: CheckoutService = Depends(get_checkout_service),
):
    return service.search_customer(payload)


@router.post("/payments")
def process_payment(
    payload: ChargeIn,
    service: CheckoutService = Depends(get_checkout_service),
):
    return service.charge(payload)
