from pydantic import BaseModel, Field, EmailStr, model_validator, field_validator
from typing import Optional, List, Literal
from datetime import date, datetime
from decimal import Decimal
from backend.app.core.constants import MAX_KITS_PER_ORDER, MAX_KITS_PER_QUOTE
from backend.app.core.password_validation import sanitize_user_input

PricingType = Literal["fixed", "cep_zones", "distance"]
DiscountType = Literal["fixed", "percentage"]
PaymentMethod = Literal["credit", "debit", "pix"]
PolicyType = Literal["register", "order"]
AdminRole = Literal["admin", "super_admin"]


# --- Eventos ---
class EventCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    date: datetime
    location: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(min_length=2, max_length=2)
    pickup_zip_code: Optional[str] = None
    pricing_type: PricingType = "distance"
    fixed_price: Optional[Decimal] = Field(default=None, ge=0)
    extra_kit_price: Optional[Decimal] = Field(default=None, ge=0)
    donation_required: bool = False
    donation_amount: Optional[Decimal] = Field(default=None, ge=0)
    donation_description: Optional[str] = None
    available: bool = True

    @field_validator("name", "location", "city", "donation_description")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=2000)

    @field_validator("state")
    @classmethod
    def upper_state(cls, v: str) -> str:
        return v.upper()


class EventUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    date: Optional[datetime] = None
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, min_length=2, max_length=2)
    pickup_zip_code: Optional[str] = None
    pricing_type: Optional[PricingType] = None
    fixed_price: Optional[Decimal] = Field(default=None, ge=0)
    extra_kit_price: Optional[Decimal] = Field(default=None, ge=0)
    donation_required: Optional[bool] = None
    donation_amount: Optional[Decimal] = Field(default=None, ge=0)
    donation_description: Optional[str] = None
    available: Optional[bool] = None


# --- Clientes ---
class AddressBody(BaseModel):
    label: Optional[str] = Field(default="Casa", max_length=60)
    street: str = Field(min_length=1, max_length=255)
    number: str = Field(min_length=1, max_length=20)
    complement: Optional[str] = Field(default=None, max_length=255)
    neighborhood: str = Field(min_length=1, max_length=120)
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(default="PB", min_length=2, max_length=2)
    zip_code: str
    is_default: bool = False

    @field_validator("label", "street", "number", "complement", "neighborhood", "city")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=255)


class AddressUpdate(BaseModel):
    label: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, min_length=2, max_length=2)
    zip_code: Optional[str] = None
    is_default: Optional[bool] = None


class CustomerIdentify(BaseModel):
    cpf: str
    birth_date: date


class CustomerRegister(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    cpf: str
    birth_date: date
    email: EmailStr
    phone: str = Field(min_length=8, max_length=20)
    addresses: List[AddressBody] = []

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return sanitize_user_input(v, max_length=255)


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    cpf: Optional[str] = None
    birth_date: Optional[date] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=20)


# --- Preço / CEP ---
class DeliveryCalculateBody(BaseModel):
    event_id: int
    address_id: int
    kit_quantity: int = Field(default=1, ge=1, le=MAX_KITS_PER_QUOTE)


class CepCheckBody(BaseModel):
    zip_code: str
    event_id: Optional[int] = None


# --- Cupons ---
class CouponValidateBody(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    event_id: int
    total_amount: Decimal = Field(ge=0)
    zip_code: Optional[str] = None


class CouponCreate(BaseModel):
    code: str = Field(min_length=2, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    max_discount: Optional[Decimal] = Field(default=None, gt=0)
    valid_from: str
    valid_until: str
    usage_limit: Optional[int] = Field(default=None, ge=1)
    per_customer_limit: Optional[int] = Field(default=None, ge=1)
    event_ids: List[int] = []
    cep_zone_ids: List[int] = []
    active: bool = True

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Desconto percentual não pode passar de 100%")
        return self


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, gt=0)
    max_discount: Optional[Decimal] = Field(default=None, gt=0)
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    per_customer_limit: Optional[int] = Field(default=None, ge=1)
    event_ids: Optional[List[int]] = None
    cep_zone_ids: Optional[List[int]] = None
    active: Optional[bool] = None


# --- Zonas de CEP ---
class CepZoneCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    ranges_text: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    active: bool = True
    priority: int = Field(default=1, ge=1)


class CepZoneUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    ranges_text: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    active: Optional[bool] = None
    priority: Optional[int] = Field(default=None, ge=1)


class CepZoneReorderBody(BaseModel):
    zone_ids: List[int] = Field(min_length=1)


class EventZonePrice(BaseModel):
    cep_zone_id: int
    price: Decimal = Field(ge=0)


class EventZonePricesBody(BaseModel):
    prices: List[EventZonePrice]


# --- Pedidos ---
class KitBody(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    cpf: str
    shirt_size: str = Field(min_length=1, max_length=10)

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return sanitize_user_input(v, max_length=255)


class OrderCreate(BaseModel):
    event_id: int
    address_id: int
    kit_quantity: int = Field(ge=1, le=MAX_KITS_PER_ORDER)
    kits: List[KitBody]
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=255)
    # Shown to the customer before submit; the server total is authoritative
    total_cost: Optional[Decimal] = None

    @model_validator(mode="after")
    def check_kits(self):
        if len(self.kits) != self.kit_quantity:
            raise ValueError("Número de kits diferente da quantidade informada")
        return self


class OrderStatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None
    send_email: bool = True


class BulkStatusUpdate(BaseModel):
    order_ids: List[int] = Field(min_length=1)
    status: str
    reason: Optional[str] = None
    send_email: bool = True


class AdminOrderUpdate(BaseModel):
    address: Optional[AddressUpdate] = None
    kits: Optional[List[KitBody]] = None


# --- Pagamentos ---
class CardPaymentBody(BaseModel):
    token: str
    payment_method_id: str
    issuer_id: Optional[str] = None
    installments: int = Field(default=1, ge=1, le=12)
    email: EmailStr
    amount: Decimal = Field(gt=0)
    payment_method: Literal["credit", "debit"] = "credit"
    event_id: int
    address_id: int
    kit_quantity: int = Field(ge=1, le=MAX_KITS_PER_ORDER)
    kits: List[KitBody]
    coupon_code: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=255)


class PixPaymentBody(BaseModel):
    order_number: str
    email: Optional[EmailStr] = None


class RefundBody(BaseModel):
    reason: Optional[str] = None


# --- Políticas ---
class PolicyCreate(BaseModel):
    type: PolicyType
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    active: bool = True


class PolicyUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    content: Optional[str] = None
    active: Optional[bool] = None


class PolicyAcceptBody(BaseModel):
    policy_id: int
    context: PolicyType
    order_id: Optional[int] = None


# --- Administradores ---
class AdminLoginBody(BaseModel):
    username: str
    password: str


class AdminUserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    password: str
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, max_length=255)
    role: AdminRole = "admin"


class AdminUserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=100)
    password: Optional[str] = None
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[AdminRole] = None
    is_active: Optional[bool] = None


class CustomerAdminCreate(CustomerRegister):
    pass


# --- Notificações ---
class TestEmailBody(BaseModel):
    to: EmailStr


class WhatsappTemplateBody(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    is_active: bool = True

    @field_validator("content")
    @classmethod
    def sanitize_content(cls, v: str) -> str:
        return sanitize_user_input(v, max_length=4000)


class WhatsappTemplateUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None
    is_active: Optional[bool] = None


class WhatsappSendBody(BaseModel):
    order_id: int
    delivery_date: Optional[str] = None


class WhatsappTestBody(BaseModel):
    phone: str
    message: str = Field(min_length=1)
