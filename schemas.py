"""
Database Schemas for the TifinCart marketplace

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., MenuItem -> "menuitem").
References between collections are stored as string ids.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

Role = Literal["customer", "seller", "admin"]
KitchenStatus = Literal["pending", "approved", "rejected", "suspended"]
OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "out_for_delivery", "delivered", "cancelled"]
Cuisine = Literal["indian", "chinese", "italian", "continental", "mexican", "thai", "japanese", "korean", "mediterranean"]
MenuCategory = Literal["Breakfast", "Lunch", "Dinner", "Snacks", "Dessert"]
ContactCategory = Literal["general", "order", "payment", "seller", "technical", "feedback"]
ContactStatus = Literal["pending", "in-progress", "resolved", "closed"]
Priority = Literal["low", "medium", "high", "urgent"]


class Address(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""


class Ratings(BaseModel):
    average: float = Field(0.0, ge=0, le=5)
    total_reviews: int = 0


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    role: Role = "customer"
    phone_number: str = ""
    address: Address = Field(default_factory=Address)
    profile_picture: str = ""


class Tempuser(BaseModel):
    """Unverified sign-up waiting for its email code"""
    name: str
    email: EmailStr
    password_hash: str
    role: Literal["customer", "seller"]
    verify_code: str = Field(..., min_length=6, max_length=6)
    verify_code_expires: datetime


class Passwordreset(BaseModel):
    email: EmailStr
    verify_code: str
    verify_code_expires: datetime
    is_used: bool = False


class TimeWindow(BaseModel):
    open: str = Field(..., pattern=r"^\d{2}:\d{2}$", description="HH:mm")
    close: str = Field(..., pattern=r"^\d{2}:\d{2}$", description="HH:mm")


class OperatingHours(BaseModel):
    morning: TimeWindow = TimeWindow(open="07:00", close="10:00")
    afternoon: TimeWindow = TimeWindow(open="12:00", close="15:00")
    evening: TimeWindow = TimeWindow(open="18:00", close="21:00")


class KitchenAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)


class Contact(BaseModel):
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None


class DeliveryInfo(BaseModel):
    delivery_charge: float = Field(30, ge=0)
    minimum_order: float = Field(100, ge=0)
    free_delivery_above: Optional[float] = Field(500, ge=0)
    delivery_radius: float = Field(10, ge=0, description="kilometers")
    estimated_delivery_time: int = Field(30, ge=0, description="minutes")


class License(BaseModel):
    fssai_number: str = Field(..., min_length=1)
    gst_number: Optional[str] = None
    business_license: Optional[str] = None


class Kitchen(BaseModel):
    owner_id: str = Field(..., description="Reference to the seller's user _id")
    name: str
    description: str = Field(..., max_length=500)
    cuisine: Cuisine
    address: KitchenAddress
    contact: Contact
    images: List[str] = []
    operating_hours: OperatingHours = Field(default_factory=OperatingHours)
    is_currently_open: bool = True
    is_active: bool = False
    delivery_info: DeliveryInfo = Field(default_factory=DeliveryInfo)
    ratings: Ratings = Field(default_factory=Ratings)
    license: License
    status: KitchenStatus = "pending"
    admin_remarks: str = ""


class Menuitem(BaseModel):
    kitchen_id: str = Field(..., description="Reference to kitchen _id")
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: MenuCategory
    is_veg: bool = True
    spiciness: Literal["mild", "medium", "hot"] = "mild"
    ingredients: List[str] = []
    image: str = ""
    serving_size: str = "1 person"
    is_available: bool = True
    ratings: Ratings = Field(default_factory=Ratings)


class CartItem(BaseModel):
    menu_item_id: str
    kitchen_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: str = ""
    is_veg: bool = True


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []
    total: float = 0.0


class OrderItem(BaseModel):
    menu_item_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)
    is_veg: Optional[bool] = None


class StatusChange(BaseModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


class OrderReview(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=500)
    created_at: datetime


class Order(BaseModel):
    customer_id: str
    seller_id: str
    kitchen_id: str
    items: List[OrderItem] = Field(..., description="Snapshot of name/price/quantity at order time")
    delivery_address: str
    payment_method: Literal["cash", "online"] = "cash"
    payment_status: Literal["pending", "completed", "failed", "refunded"] = "pending"
    status: OrderStatus = "pending"
    subtotal: float
    delivery_fee: float
    tax: float
    total_amount: float
    status_history: List[StatusChange] = []
    review: Optional[OrderReview] = None
    is_reviewed: bool = False


class Review(BaseModel):
    customer_id: str
    order_id: str
    kitchen_id: str
    seller_id: str
    menu_item_id: Optional[str] = None
    type: Literal["kitchen", "item"]
    rating: int = Field(..., ge=1, le=5)
    title: str = ""
    comment: str = ""
    tags: List[str] = []


class PlanFeatures(BaseModel):
    max_kitchens: int = Field(1, ge=-1, description="-1 means unlimited")
    max_menu_items_per_kitchen: int = Field(3, ge=-1, description="-1 means unlimited")
    priority_support: bool = False
    analytics_access: bool = False
    customization: bool = False


class Subscriptionplan(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    features: PlanFeatures = Field(default_factory=PlanFeatures)
    is_active: bool = True


class PaymentDetails(BaseModel):
    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str
    amount: float
    currency: str = "INR"


class Sellersubscription(BaseModel):
    seller_id: str
    plan_id: str
    status: Literal["active", "cancelled", "pending"] = "pending"
    activated_at: Optional[datetime] = None
    gateway_order_id: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0, description="price charged when the gateway order was created")
    payment_details: Optional[PaymentDetails] = None


class Contactmessage(BaseModel):
    name: str = Field(..., max_length=100)
    email: EmailStr
    subject: str = Field(..., max_length=200)
    category: ContactCategory = "general"
    message: str = Field(..., min_length=10, max_length=2000)
    user_id: Optional[str] = None
    status: ContactStatus = "pending"
    priority: Priority = "medium"
    admin_notes: Optional[str] = Field(None, max_length=1000)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


COLLECTIONS = [
    "user", "tempuser", "passwordreset", "kitchen", "menuitem", "cart", "order",
    "review", "subscriptionplan", "sellersubscription", "contactmessage",
]
