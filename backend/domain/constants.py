"""
Domain constants used across services/routers.
"""

# ── Pricing ────────────────────────────────────────────────────────
CURRENCY = "INR"
PRICE_TOLERANCE = 0.01          # rupees; client vs server price/total drift allowed
GST_RATE = 0.18                 # catalog prices are GST inclusive
SHIPPING_FREE_MIN_BOXES = 3
SHIPPING_TWO_BOX_FEE = 49.0
SHIPPING_DEFAULT_FEE = 99.0

# ── Checkout ───────────────────────────────────────────────────────
MIN_ORDER_AMOUNT = 1
MAX_ORDER_AMOUNT = 1_000_000
MERCHANT_ORDER_PREFIX = "CP"
MERCHANT_ORDER_SUFFIX_LENGTH = 9
PENDING_GRACE_SECONDS = 600     # past gateway expiry before a PENDING order is failed locally

# ── Order numbering ────────────────────────────────────────────────
ORDER_NO_PREFIX = "ORD"
INVOICE_NO_PREFIX = "W"
ORDER_NO_COUNTER = "order_no"
INVOICE_NO_COUNTER = "invoice_no"

# ── Seller (invoice header) ────────────────────────────────────────
SELLER_NAME = "BubbleBeads"
SELLER_ADDRESS = "India"
SELLER_EMAIL = "support@bubblebeads.in"
