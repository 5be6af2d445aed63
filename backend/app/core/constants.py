"""
Shared constants for the backend application.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Order statuses
# ---------------------------------------------------------------------------
STATUS_CONFIRMED = "confirmado"
STATUS_AWAITING_PAYMENT = "aguardando_pagamento"
STATUS_CANCELLED = "cancelado"
STATUS_PICKING_UP = "kits_sendo_retirados"
STATUS_IN_TRANSIT = "em_transito"
STATUS_DELIVERED = "entregue"

VALID_ORDER_STATUSES = [
    STATUS_CONFIRMED,
    STATUS_AWAITING_PAYMENT,
    STATUS_CANCELLED,
    STATUS_PICKING_UP,
    STATUS_IN_TRANSIT,
    STATUS_DELIVERED,
]

ORDER_STATUS_LABELS = {
    STATUS_CONFIRMED: "Confirmado",
    STATUS_AWAITING_PAYMENT: "Aguardando pagamento",
    STATUS_CANCELLED: "Cancelado",
    STATUS_PICKING_UP: "Kits sendo retirados",
    STATUS_IN_TRANSIT: "Em trânsito",
    STATUS_DELIVERED: "Entregue",
}

# Orders in these statuses do not count as revenue
NON_REVENUE_STATUSES = (STATUS_CANCELLED, STATUS_AWAITING_PAYMENT)

# Who changed an order status (order_status_history.changed_by)
CHANGED_BY_SYSTEM = "system"
CHANGED_BY_ADMIN = "admin"
CHANGED_BY_GATEWAY = "mercadopago"
CHANGED_BY_CUSTOMER = "customer"

PAYMENT_METHODS = ("credit", "debit", "pix")

# ---------------------------------------------------------------------------
# Gateway payment statuses (Mercado Pago)
# ---------------------------------------------------------------------------
PAYMENT_APPROVED = "approved"
PAYMENT_PENDING = "pending"
PAYMENT_IN_PROCESS = "in_process"
PAYMENT_REJECTED = "rejected"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_REFUNDED = "refunded"
PAYMENT_EXPIRED = "expired"

# Card payments in these statuses produce an order
ORDER_CREATING_PAYMENT_STATUSES = (PAYMENT_APPROVED, PAYMENT_PENDING, PAYMENT_IN_PROCESS)
FAILED_PAYMENT_STATUSES = (PAYMENT_REJECTED, PAYMENT_CANCELLED)

# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------
PRICING_FIXED = "fixed"
PRICING_CEP_ZONES = "cep_zones"
PRICING_DISTANCE = "distance"
PRICING_TYPES = (PRICING_FIXED, PRICING_CEP_ZONES, PRICING_DISTANCE)

DEFAULT_EXTRA_KIT_PRICE = Decimal("8.00")
DEFAULT_PICKUP_ZIP_CODE = "58000000"
MAX_KITS_PER_ORDER = 5
MAX_KITS_PER_QUOTE = 10

DISCOUNT_FIXED = "fixed"
DISCOUNT_PERCENTAGE = "percentage"

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
PERCENT_BASE = Decimal("100")

# ---------------------------------------------------------------------------
# Policies / admin
# ---------------------------------------------------------------------------
POLICY_TYPES = ("register", "order")
ADMIN_ROLES = ("admin", "super_admin")
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
POLICY_REGISTER = "register"
POLICY_ORDER = "order"

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
EMAIL_SENT = "sent"
EMAIL_FAILED = "failed"
WHATSAPP_PENDING = "pending"
WHATSAPP_SENT = "sent"
WHATSAPP_ERROR = "error"
