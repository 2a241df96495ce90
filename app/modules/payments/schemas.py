from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Union


class PaytmInitiateRequest(BaseModel):
    orderId: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    customerPhone: Optional[str] = None


class PaytmInitiateResponse(BaseModel):
    success: bool = True
    txnToken: Optional[str] = None
    orderId: str
    mid: Optional[str] = None
    amount: Union[float, str]
    paymentUrl: str
    environment: str


class PaytmStatusResponse(BaseModel):
    success: bool
    status: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    amount: Optional[str] = None
    orderId: str


class PaytmRefundRequest(BaseModel):
    orderId: str = Field(..., description="Our transaction id (PAYTM_...)")
    txnId: str
    refundAmount: Union[float, str]
    refId: Optional[str] = None


class RazorpayInitiateRequest(BaseModel):
    orderId: Optional[str] = None
    amount: Optional[float] = None
    customerPhone: Optional[str] = None
    customerEmail: Optional[str] = None
    customerName: Optional[str] = None


class RazorpayVerifyRequest(BaseModel):
    orderId: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentResult(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
