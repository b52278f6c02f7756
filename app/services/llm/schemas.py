"""Structured outputs expected from the language model.

The same models are handed to the providers as response schemas and used to
validate whatever comes back, so keep them within what strict JSON-schema
modes accept: bounds are enforced with validators, not `Field` constraints.
"""
from typing import Literal, Union

from pydantic import BaseModel, field_validator


class SendMessageAction(BaseModel):
    type: Literal["send_message"]


class SuggestCartsPayload(BaseModel):
    input: str

    @field_validator("input")
    @classmethod
    def input_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("input must not be blank")
        return value


class SuggestCartsAction(BaseModel):
    type: Literal["suggest_carts"]
    payload: SuggestCartsPayload


class AnswerMessage(BaseModel):
    message: str
    action: Union[SendMessageAction, SuggestCartsAction]


class CartProduct(BaseModel):
    id: int
    name: str
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("quantity must be at least 1")
        return value


class Cart(BaseModel):
    store_id: int
    products: list[CartProduct]
    score: int

    @field_validator("products")
    @classmethod
    def products_not_empty(cls, value: list[CartProduct]) -> list[CartProduct]:
        if not value:
            raise ValueError("a cart needs at least one product")
        return value

    @field_validator("score")
    @classmethod
    def score_in_range(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("score must be between 0 and 100")
        return value


class SuggestCarts(BaseModel):
    carts: list[Cart]
    response: str
