from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Dict, Any, Literal


OrderStatus = Literal[
    "Pending", "Awaiting Payment", "Payment Confirmed", "Confirmed", "Processing",
    "Ready to Ship", "Shipped", "Ready for Pickup", "Completed", "Delivered",
    "Cancelled", "Rejected"
]


class OrderItemIn(BaseModel):
    product_id: Optional[str] = None
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)


class OrderCreate(BaseModel):
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    customer_id: Optional[str] = None
    items: List[OrderItemIn] = []
    subtotal: Optional[float] = None
    gst_amount: Optional[float] = None
    total: Optional[float] = None
    type: Optional[str] = "Delivery"
    delivery_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class OrderListResponse(BaseModel):
    orders: List[Dict[str, Any]]
    count: int


class WalkInOrderCreate(BaseModel):
    action: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[OrderItemIn] = []
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class DailyStats(BaseModel):
    totalOrders: int
    totalRevenue: float
    completedOrders: int
    pendingOrders: int
