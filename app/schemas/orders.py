from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CheckoutLineRequest(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)


class CheckoutRequest(BaseModel):
    """Authenticated checkout. The lines come from the buyer's cart."""

    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    payment_method: Optional[str] = None


class GuestCheckoutRequest(CheckoutRequest):
    email: Optional[str] = None
    cart_items: Optional[List[CheckoutLineRequest]] = None


class UpdateStatusRequest(BaseModel):
    status: Literal["processing", "shipped", "delivered"]
    tracking_number: Optional[str] = Field(default=None, max_length=100)


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundRequest(BaseModel):
    amount: Optional[float] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=500)
