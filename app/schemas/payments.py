from pydantic import BaseModel


class CreateIntentRequest(BaseModel):
    order_id: int


class ConfirmPaymentRequest(BaseModel):
    order_id: int
