"""Data models for the Sijoer contact-lens storefront."""

import re
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field, ValidationInfo, field_validator


SelectionValue = Union[str, Decimal]

# Option id -> chosen value. Treated as immutable: every mutation builds a new dict.
SelectionState = dict[str, SelectionValue]


class Product(BaseModel):
    """Represents a configurable lens product."""

    id: str = Field(description="Product ID")
    name: str = Field(description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    base_price: Decimal = Field(default=Decimal("0"), ge=0, description="Base price in CNY")
    image_url: Optional[str] = Field(None, description="Product image URL")


class OptionChoice(BaseModel):
    """A single choice of a color or select option."""

    value: str
    label: str = ""
    price_adjustment: Optional[Decimal] = None


class CustomizationOption(BaseModel):
    """A configurable attribute of a product."""

    id: str = Field(description="Option ID")
    name: str = Field(description="Display name")
    type: Literal["color", "numeric", "select"] = Field(description="Option kind")
    options: list[OptionChoice] = Field(default_factory=list, description="Choices for color/select")
    min: Optional[Decimal] = None
    max: Optional[Decimal] = None
    step: Optional[Decimal] = None
    unit: Optional[str] = None
    required: bool = False
    default_value: Optional[SelectionValue] = None
    price_adjustment: Optional[Decimal] = Field(None, description="Flat adjustment for numeric options")
    group: str = ""
    order: int = 0
    product_id: Optional[str] = Field(None, description="Owning product, None for shared options")
    quantization_profile: Optional[str] = Field(
        None, description="Name of the snapping profile applied to numeric values"
    )

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        # The backend stores numeric options as "number"
        if value == "number":
            return "numeric"
        return value

    @field_validator("options", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or []

    def choice_for(self, value: SelectionValue) -> Optional[OptionChoice]:
        """Return the choice matching a selected value, if it still exists."""
        for choice in self.options:
            if choice.value == value:
                return choice
        return None


class SubmissionPayload(BaseModel):
    """Finalized selection handed to the cart."""

    product_id: str
    selections: SelectionState = Field(default_factory=dict)
    total_price: Decimal


class CartItem(BaseModel):
    """Represents an item in the shopping cart."""

    id: str = Field(description="Cart item ID")
    product: Product
    quantity: int = Field(gt=0, description="Quantity of the product")
    customization: dict = Field(default_factory=dict, description="Selected option values")
    unit_price: Decimal = Field(description="Price of one customized unit")
    subtotal: Decimal = Field(description="Subtotal for this cart item")


class Cart(BaseModel):
    """Represents the shopping cart."""

    id: Optional[str] = None
    items: list[CartItem] = Field(default_factory=list, description="Cart items")
    total: Decimal = Field(default=Decimal("0"), description="Total cart value")
    item_count: int = Field(default=0, description="Total number of items")


class ShippingAddress(BaseModel):
    """A saved delivery address."""

    id: str
    recipient_name: str
    phone: str
    province: str = ""
    city: str = ""
    district: str = ""
    street_address: str = ""
    postal_code: Optional[str] = None
    is_default: bool = False

    def one_line(self) -> str:
        return f"{self.recipient_name} {self.phone}, {self.province}{self.city}{self.district}{self.street_address}"


PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")
POSTAL_CODE_PATTERN = re.compile(r"^\d{6}$")


class AddressInput(BaseModel):
    """Shipping address as entered by the customer, before it is saved."""

    recipient_name: str
    phone: str
    province: str
    city: str
    district: str
    street_address: str
    postal_code: str
    is_default: bool = False

    @field_validator("recipient_name", "province", "city", "district", "street_address")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        value = value.strip()
        if not value:
            raise ValueError(f"{info.field_name} is required")
        return value

    @field_validator("phone")
    @classmethod
    def _valid_phone(cls, value: str) -> str:
        value = value.strip()
        if not PHONE_PATTERN.match(value):
            raise ValueError("Enter a valid mobile phone number")
        return value

    @field_validator("postal_code")
    @classmethod
    def _valid_postal_code(cls, value: str) -> str:
        value = value.strip()
        if not POSTAL_CODE_PATTERN.match(value):
            raise ValueError("Enter a valid 6-digit postal code")
        return value


class OrderSummary(BaseModel):
    """Price breakdown of an order before it is placed."""

    subtotal: Decimal
    shipping: Decimal
    discount: Decimal = Decimal("0")
    total: Decimal


class OrderItem(BaseModel):
    """Represents an item in an order."""

    product_id: Optional[str] = None
    product_name: str
    quantity: int
    price: Decimal
    subtotal: Decimal
    customization: dict = Field(default_factory=dict)


class Order(BaseModel):
    """Represents an order."""

    id: str = Field(description="Order ID")
    status: str = Field(description="Order status (pending_payment, paid, shipped, etc.)")
    created_at: Optional[datetime] = Field(None, description="Order creation timestamp")
    total: Decimal = Field(description="Order total value")
    shipping_fee: Decimal = Field(default=Decimal("0"))
    items: list[OrderItem] = Field(default_factory=list, description="Order items")
    shipping_address_id: Optional[str] = None


class OrderTracking(BaseModel):
    """Shipment status of an order."""

    id: str
    order_number: Optional[str] = None
    status: str = Field(description="Order status (pending_payment, paid, shipped, etc.)")
    tracking_number: Optional[str] = None
    shipping_company: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_shipment(self) -> bool:
        return bool(self.tracking_number and self.shipping_company)


class UserProfile(BaseModel):
    """Customer profile."""

    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None


class AuthCredentials(BaseModel):
    """Authentication credentials."""

    email: str
    password: str


class Registration(BaseModel):
    """Sign-up details for a new customer account."""

    email: str
    password: str
    display_name: str
    phone: str

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value:
            raise ValueError("Enter a valid email address")
        return value

    @field_validator("password")
    @classmethod
    def _long_enough(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        return value

    @field_validator("display_name")
    @classmethod
    def _has_display_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("display_name is required")
        return value

    @field_validator("phone")
    @classmethod
    def _valid_phone(cls, value: str) -> str:
        value = value.strip()
        if not PHONE_PATTERN.match(value):
            raise ValueError("Enter a valid mobile phone number")
        return value


class SessionData(BaseModel):
    """Session data for authenticated user."""

    access_token: Optional[str] = Field(None, description="Bearer token")
    refresh_token: Optional[str] = Field(None, description="Refresh token")
    expires_at: Optional[int] = Field(None, description="Expiry as unix timestamp")
    user_id: Optional[str] = Field(None, description="User ID")
    user_email: Optional[str] = Field(None, description="User email")
    is_authenticated: bool = Field(default=False, description="Authentication status")
