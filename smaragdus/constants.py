# smaragdus/constants.py
USER_ROLES = ("admin", "regular_customer", "premium_customer", "guest")
CURRENCY_CODES = ("USD", "EUR", "GBP", "RUB", "CHF", "JPY", "KZT")
LANGUAGES = ("en", "ru")

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
PAYMENT_TYPES = ("bank_transfer", "crypto", "cash", "stripe")

# cancellation is reachable from every non-terminal status
ORDER_STATUS_TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}
USER_CANCELLABLE_STATUSES = ("pending", "confirmed")

GEMSTONE_TYPES = (
    "diamond", "emerald", "ruby", "sapphire", "amethyst", "topaz", "garnet",
    "peridot", "citrine", "tanzanite", "aquamarine", "morganite", "tourmaline",
    "zircon", "apatite", "quartz", "paraiba", "spinel", "alexandrite", "agate",
)
GEM_COLORS = (
    "red", "blue", "green", "yellow", "pink", "white", "black", "colorless",
    "D", "E", "F", "G", "H", "I", "J", "K", "L", "M",
    "fancy-yellow", "fancy-blue", "fancy-pink", "fancy-green",
)
GEM_CUTS = (
    "round", "oval", "marquise", "pear", "emerald", "princess", "cushion",
    "radiant", "fantasy", "baguette", "asscher", "rhombus", "trapezoid",
    "triangle", "heart", "cabochon", "pentagon", "hexagon",
)
GEM_CLARITIES = ("FL", "IF", "VVS1", "VVS2", "VS1", "VS2", "SI1", "SI2", "I1")
METADATA_STATUSES = ("needs_review", "updated", "needs_updating", "verified", "rejected")

CHAT_SENDER_TYPES = ("user", "admin")

CONTACT_INQUIRY_TYPES = ("general", "purchase", "wholesale", "certification", "support", "partnership")
CONTACT_METHODS = ("email", "phone", "whatsapp", "telegram")
URGENCY_LEVELS = ("low", "medium", "high", "urgent")
CONTACT_STATUSES = ("unread", "read", "in_progress", "resolved", "archived")
CONTACT_STATUS_TRANSITIONS = {
    "unread": ("read", "in_progress", "resolved", "archived"),
    "read": ("in_progress", "resolved", "archived"),
    "in_progress": ("resolved", "archived"),
    "resolved": ("archived",),
    "archived": (),
}

AUDIT_ACTIONS = (
    "create", "update", "delete", "role_change", "activate", "suspend", "password_reset",
)
BULK_USER_OPERATIONS = ("role_change", "activate", "suspend", "delete")

CART_MAX_ITEMS = 100
CART_MAX_QUANTITY = 99

DEFAULT_PAGE_SIZE = 24
MAX_PAGE_SIZE = 100
