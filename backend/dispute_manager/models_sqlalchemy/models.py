from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Boolean, Index, Numeric, BigInteger, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from . import Base
from dispute_manager.utils import crypto


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# JSONB on Postgres, generic JSON elsewhere (SQLite in tests).
JsonPayload = JSON().with_variant(JSONB(), "postgresql")


class Shop(Base):
    __tablename__ = "shops"

    id = Column(String(36), primary_key=True, default=_new_id)
    shop_domain = Column(String(255), unique=True, nullable=False, index=True)
    # Physical column holds an ENC:v1: blob when written via the property.
    _access_token = Column("access_token", Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    trial_start_date = Column(DateTime(timezone=True), nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    billing_active = Column(Boolean, nullable=False, default=False)
    billing_plan = Column(String(50), nullable=True)
    billing_subscription_id = Column(Text, nullable=True)
    billing_last_checked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    disputes = relationship("Dispute", back_populates="shop", cascade="all, delete-orphan")
    dispute_responses = relationship("DisputeResponse", back_populates="shop", cascade="all")

    @property
    def access_token(self):
        return crypto.decrypt(self._access_token)

    @access_token.setter
    def access_token(self, value):
        self._access_token = crypto.encrypt(value)


class Dispute(Base):
    """Dispute or chargeback synced from Shopify.

    Chargeback-sourced rows share this table; their ``shopify_dispute_id``
    carries a ``chargeback-`` prefix.
    """

    __tablename__ = "disputes"

    id = Column(String(36), primary_key=True, default=_new_id)
    shop_id = Column(String(36), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    shopify_dispute_id = Column(String(255), nullable=False)

    order_id = Column(String(100), nullable=True)
    order_name = Column(String(100), nullable=True)
    customer_email = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)
    reason = Column(Text, nullable=True)
    chargeback_reason = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    currency = Column(String(10), nullable=True)
    evidence_due_by = Column(DateTime(timezone=True), nullable=True)
    evidence_submitted = Column(Boolean, nullable=False, default=False)
    raw_payload = Column(JsonPayload, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    shop = relationship("Shop", back_populates="disputes")
    dispute_responses = relationship(
        "DisputeResponse",
        back_populates="dispute",
        cascade="all, delete-orphan",
        order_by="DisputeResponse.created_at.desc()",
    )

    __table_args__ = (
        # Composite natural key used for upserts and deduplication.
        UniqueConstraint("shop_id", "shopify_dispute_id", name="uq_disputes_shop_dispute"),
        Index("idx_disputes_shop_created", "shop_id", "created_at"),
        Index("idx_disputes_shop_order", "shop_id", "order_id"),
        Index("idx_disputes_shop_email", "shop_id", "customer_email"),
    )


class DisputeResponse(Base):
    __tablename__ = "dispute_responses"

    id = Column(String(36), primary_key=True, default=_new_id)
    dispute_id = Column(String(36), ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False)
    shop_id = Column(String(36), ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    draft_text = Column(Text, nullable=False)
    model_used = Column(String(100), nullable=True)
    is_final = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    dispute = relationship("Dispute", back_populates="dispute_responses")
    shop = relationship("Shop", back_populates="dispute_responses")

    __table_args__ = (
        Index("idx_dispute_responses_dispute_created", "dispute_id", "created_at"),
        Index("idx_dispute_responses_shop", "shop_id"),
    )


class ShopifySession(Base):
    """Shopify OAuth session (offline sessions are keyed ``offline_<shop>``)."""

    __tablename__ = "sessions"

    id = Column(String(255), primary_key=True)
    shop = Column(String(255), nullable=False, index=True)
    state = Column(String(255), nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)
    scope = Column(Text, nullable=True)
    expires = Column(DateTime(timezone=True), nullable=True)
    _access_token = Column("access_token", Text, nullable=False)
    user_id = Column(BigInteger, nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    account_owner = Column(Boolean, nullable=False, default=False)
    locale = Column(String(20), nullable=True)
    collaborator = Column(Boolean, nullable=True, default=False)
    email_verified = Column(Boolean, nullable=True, default=False)

    @property
    def access_token(self):
        return crypto.decrypt(self._access_token)

    @access_token.setter
    def access_token(self, value):
        self._access_token = crypto.encrypt(value)
