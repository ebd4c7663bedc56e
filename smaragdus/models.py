# smaragdus/models.py
import uuid

from sqlalchemy import (
    Column, Integer, String, Numeric, JSON, DateTime, Date, Boolean, Text,
    ForeignKey, UniqueConstraint, Index,
)

from .db import Base, utcnow


def gen_uuid():
    return str(uuid.uuid4())


class UserProfile(Base):
    __tablename__ = "user_profiles"
    user_id = Column(String, primary_key=True, default=gen_uuid)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default="regular_customer", index=True)
    preferred_currency = Column(String(3), nullable=False, default="USD")
    language_preference = Column(String(2), nullable=False, default="en")
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sign_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class UserPreferences(Base):
    __tablename__ = "user_preferences"
    user_id = Column(String, ForeignKey("user_profiles.user_id", ondelete="CASCADE"), primary_key=True)
    email_notifications = Column(Boolean, nullable=False, default=True)
    order_updates = Column(Boolean, nullable=False, default=True)
    marketing_emails = Column(Boolean, nullable=False, default=False)
    cart_updates = Column(Boolean, nullable=False, default=True)
    chat_notifications = Column(Boolean, nullable=False, default=True)
    theme = Column(String, nullable=False, default="system")
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Origin(Base):
    __tablename__ = "origins"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, unique=True, nullable=False)
    country = Column(String, nullable=True)
    region = Column(String, nullable=True)
    mine_name = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Gemstone(Base):
    __tablename__ = "gemstones"
    id = Column(String, primary_key=True, default=gen_uuid)
    serial_number = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, index=True)  # gemstone type
    color = Column(String, nullable=False)
    cut = Column(String, nullable=False)
    clarity = Column(String, nullable=False)
    weight_carats = Column(Numeric(8, 3), nullable=False)
    length_mm = Column(Numeric(8, 2), nullable=True)
    width_mm = Column(Numeric(8, 2), nullable=True)
    depth_mm = Column(Numeric(8, 2), nullable=True)
    price_amount = Column(Numeric(12, 2), nullable=False)
    price_currency = Column(String(3), nullable=False, default="USD")
    premium_price_amount = Column(Numeric(12, 2), nullable=True)
    premium_price_currency = Column(String(3), nullable=True)
    in_stock = Column(Boolean, nullable=False, default=True, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    delivery_days = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    promotional_text = Column(Text, nullable=True)
    marketing_highlights = Column(JSON, nullable=True)
    internal_code = Column(String, nullable=True)
    origin_id = Column(String, ForeignKey("origins.id", ondelete="SET NULL"), nullable=True)
    metadata_status = Column(String, nullable=False, default="needs_review")
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class GemstoneEnrichment(Base):
    """AI-derived copy; only read here, merged into the catalog read model."""
    __tablename__ = "gemstone_enrichments"
    id = Column(String, primary_key=True, default=gen_uuid)
    gemstone_id = Column(String, ForeignKey("gemstones.id", ondelete="CASCADE"), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    promotional_text = Column(Text, nullable=True)
    marketing_highlights = Column(JSON, nullable=True)
    confidence_score = Column(Numeric(4, 3), nullable=True)
    model_version = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class GemstoneImage(Base):
    __tablename__ = "gemstone_images"
    id = Column(String, primary_key=True, default=gen_uuid)
    gemstone_id = Column(String, ForeignKey("gemstones.id", ondelete="CASCADE"), index=True, nullable=False)
    image_url = Column(String, nullable=False)
    image_order = Column(Integer, nullable=False, default=0)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Certification(Base):
    __tablename__ = "certifications"
    id = Column(String, primary_key=True, default=gen_uuid)
    gemstone_id = Column(String, ForeignKey("gemstones.id", ondelete="CASCADE"), index=True, nullable=False)
    certificate_type = Column(String, nullable=False)
    certificate_number = Column(String, nullable=False)
    certificate_url = Column(String, nullable=True)
    issued_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("user_id", "gemstone_id", name="uq_cart_user_gemstone"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, index=True, nullable=False)
    gemstone_id = Column(String, ForeignKey("gemstones.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    meta = Column("metadata", JSON, nullable=True)
    added_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True, default=gen_uuid)
    order_number = Column(String, unique=True, nullable=False)
    user_id = Column(String, index=True, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    payment_type = Column(String, nullable=False)
    currency_code = Column(String(3), nullable=False, default="USD")
    subtotal_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    delivery_address = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(String, primary_key=True, default=gen_uuid)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    gemstone_id = Column(String, ForeignKey("gemstones.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)


class OrderEvent(Base):
    __tablename__ = "order_events"
    id = Column(String, primary_key=True, default=gen_uuid)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    event_type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    performed_by = Column(String, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    is_internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_user_created", "user_id", "created_at"),)
    id = Column(String, primary_key=True, default=gen_uuid)
    user_id = Column(String, nullable=False)  # conversation owner
    admin_id = Column(String, nullable=True)
    sender_type = Column(String, nullable=False)  # "user" | "admin"
    content = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=False, default=list)
    is_auto_response = Column(Boolean, nullable=False, default=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class UserAuditLog(Base):
    __tablename__ = "user_audit_logs"
    id = Column(String, primary_key=True, default=gen_uuid)
    admin_user_id = Column(String, index=True, nullable=False)
    target_user_id = Column(String, index=True, nullable=True)
    action = Column(String, nullable=False)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class ContactMessage(Base):
    __tablename__ = "contact_messages"
    id = Column(String, primary_key=True, default=gen_uuid)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    company = Column(String, nullable=True)
    subject = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    inquiry_type = Column(String, nullable=False, default="general")
    preferred_contact_method = Column(String, nullable=False, default="email")
    urgency_level = Column(String, nullable=False, default="medium")
    status = Column(String, nullable=False, default="unread", index=True)
    is_spam = Column(Boolean, nullable=False, default=False)
    admin_notes = Column(Text, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    responded_by = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    locale = Column(String(2), nullable=False, default="en")
    referrer_url = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SearchAnalytics(Base):
    __tablename__ = "search_analytics"
    id = Column(String, primary_key=True, default=gen_uuid)
    search_query = Column(String, nullable=False, index=True)
    filters = Column(JSON, nullable=True)
    results_count = Column(Integer, nullable=False, default=0)
    used_fuzzy_search = Column(Boolean, nullable=False, default=False)
    user_id = Column(String, nullable=True, index=True)
    session_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class CurrencyRate(Base):
    __tablename__ = "currency_rates"
    __table_args__ = (UniqueConstraint("base_currency", "target_currency", name="uq_currency_pair"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    base_currency = Column(String(3), nullable=False, default="USD")
    target_currency = Column(String(3), nullable=False)
    rate = Column(Numeric(18, 6), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
