"""
Escrow Ledger - Database Schema
===============================

Durable record shapes for the booking payment escrow:
- EscrowRecord: one payment hold per booking, with its audit log
- Dispute: the dispute raised against a hold
- LedgerTransaction: immutable proof that funds moved to the landowner
- PaymentTracking: query-friendly mirror of each escrow's status/timeline
- UserProfile: the party directory holds are validated against

Notification, admin and support subsystems read these tables; only the
escrow ledger writes them.
"""

import uuid
from enum import Enum
from sqlalchemy import (
    Column, String, Numeric, DateTime, Boolean, Text, Integer,
    ForeignKey, Index, CheckConstraint, JSON, func
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class EscrowStatus(Enum):
    """Escrow hold lifecycle states"""
    HELD = "held"
    RELEASED = "released"
    VOIDED = "voided"  # Admin cancelled the authorization


class DisputeStatus(Enum):
    """Dispute flag carried on the escrow record"""
    NONE = "none"
    PENDING = "pending"


class TrackingStatus(Enum):
    """Statuses of the payment tracking mirror"""
    INITIATED = "initiated"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    VOIDED = "voided"


class AuditAction(Enum):
    """Actions appended to an escrow's audit log"""
    CREATED = "created"
    RELEASED = "released"
    RELEASE_FAILED = "release_failed"
    DISPUTE_CREATED = "dispute_created"
    FORCE_RELEASE_REQUESTED = "force_release_requested"
    VOIDED = "voided"


class UserRole(Enum):
    CUSTOMER = "customer"
    LANDOWNER = "landowner"
    ADMIN = "admin"


class LedgerTransactionType(Enum):
    PAYMENT_RELEASE = "payment_release"


# ============================================================================
# PARTIES
# ============================================================================

class UserProfile(Base):
    """Marketplace party (trucker or landowner) the ledger resolves holds against"""
    __tablename__ = 'user_profiles'

    id = Column(String(64), primary_key=True)
    role = Column(String(20), default=UserRole.CUSTOMER.value, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    # Landowner's payout destination at the payment gateway
    payout_account_ref = Column(String(128), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


# ============================================================================
# ESCROW
# ============================================================================

class EscrowRecord(Base):
    """Payment held against a booking until its scheduled release"""
    __tablename__ = 'escrow_records'

    id = Column(String(32), primary_key=True, default=_new_id)

    # Foreign references
    booking_id = Column(String(64), unique=True, nullable=False, index=True)
    customer_id = Column(String(64), ForeignKey('user_profiles.id'), nullable=False, index=True)
    landowner_id = Column(String(64), ForeignKey('user_profiles.id'), nullable=False, index=True)

    # Financial details
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), default="usd", nullable=False)
    transaction_id = Column(String(128), unique=True, nullable=False, index=True)
    gateway_hold_ref = Column(String(128), nullable=False)

    # Status and lifecycle
    status = Column(String(20), default=EscrowStatus.HELD.value, nullable=False)
    released = Column(Boolean, default=False, nullable=False)
    released_at = Column(DateTime, nullable=True)
    transfer_ref = Column(String(128), nullable=True)
    captured_at = Column(DateTime, nullable=True)  # Capture succeeded; retries only transfer
    voided_at = Column(DateTime, nullable=True)

    # Timestamps (naive UTC)
    created_at = Column(DateTime, nullable=False)
    scheduled_release_date = Column(DateTime, nullable=False)

    # Dispute
    dispute_status = Column(String(20), default=DisputeStatus.NONE.value, nullable=False)
    dispute_id = Column(String(32), nullable=True)
    dispute_details = Column(JSON, nullable=True)
    dispute_created_at = Column(DateTime, nullable=True)

    # {customerVerified, landownerVerified, amountValidated, riskLevel}
    security_checks = Column(JSON, nullable=False, default=dict)

    # Release attempt tracking
    attempts = Column(Integer, default=0, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    tracking_version = Column(String(10), default="1.0", nullable=False)

    # Append-only [{action, timestamp, details}]
    audit_log = Column(JSON, nullable=False, default=list)

    version = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_escrow_amount_positive'),
        CheckConstraint('attempts >= 0', name='ck_escrow_attempts_non_negative'),
        Index('ix_escrow_due_releases', 'released', 'dispute_status', 'scheduled_release_date'),
    )

    def __repr__(self):
        return (
            f"<EscrowRecord {self.id} booking={self.booking_id} status={self.status} "
            f"dispute={self.dispute_status} attempts={self.attempts}>"
        )


class Dispute(Base):
    """Dispute raised against an escrow hold; resolution happens outside the ledger"""
    __tablename__ = 'disputes'

    id = Column(String(32), primary_key=True)  # 128-bit random hex
    escrow_id = Column(String(32), ForeignKey('escrow_records.id'), nullable=False, index=True)

    # Denormalized copies for dispute queues
    booking_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False)
    landowner_id = Column(String(64), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    details = Column(JSON, nullable=True)
    status = Column(String(20), default=DisputeStatus.PENDING.value, nullable=False)
    evidence = Column(JSON, nullable=False, default=list)
    resolution = Column(JSON, nullable=True)
    timeline = Column(JSON, nullable=False, default=list)
    security_checks = Column(JSON, nullable=True)
    dispute_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)


class LedgerTransaction(Base):
    """Immutable proof of a completed release; written once, never updated"""
    __tablename__ = 'ledger_transactions'

    id = Column(String(32), primary_key=True, default=_new_id)
    type = Column(String(30), default=LedgerTransactionType.PAYMENT_RELEASE.value, nullable=False)
    escrow_id = Column(String(32), ForeignKey('escrow_records.id'), unique=True, nullable=False)
    transaction_id = Column(String(128), nullable=False, index=True)
    booking_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False)
    landowner_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    transfer_ref = Column(String(128), nullable=False)
    security_checks = Column(JSON, nullable=True)
    transaction_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)


class PaymentTracking(Base):
    """Denormalized mirror of an escrow's status and timeline for cross-cutting queries"""
    __tablename__ = 'payment_tracking'

    id = Column(String(32), primary_key=True, default=_new_id)
    escrow_id = Column(String(32), ForeignKey('escrow_records.id'), unique=True, nullable=False)
    transaction_id = Column(String(128), nullable=False, index=True)
    status = Column(String(20), default=TrackingStatus.INITIATED.value, nullable=False, index=True)
    timeline = Column(JSON, nullable=False, default=list)
    risk_assessment = Column(JSON, nullable=True)
    tracking_metadata = Column("metadata", JSON, nullable=True)
    updated_at = Column(DateTime, nullable=False)
