from pydantic import BaseModel
from typing import Optional, Union


class CouponBody(BaseModel):
    r: Union[str, int]
    s: Union[str, int]
    v: Union[int, str]
    digest: Optional[str] = None


class PhaseRequest(BaseModel):
    phase: int


class PriceRequest(BaseModel):
    price: int


class RoyaltyRequest(BaseModel):
    receiver: str
    basis_points: int


class IdentityRequest(BaseModel):
    identity: str


class IssueRequest(BaseModel):
    quantity: int
    payment: int


class CouponIssueRequest(BaseModel):
    quantity: int
    payment: int
    category: Union[int, str]
    coupon: CouponBody


class CouponVerifyRequest(BaseModel):
    category: Union[int, str]
    beneficiary: str
    coupon: CouponBody


class DepositRequest(BaseModel):
    amount: int
