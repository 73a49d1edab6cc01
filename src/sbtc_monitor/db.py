import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Engine,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from sbtc_monitor.config import DatabaseSettings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionState(enum.Enum):
    """Lifecycle of a tracked transaction. Everything but PENDING is terminal."""

    PENDING = "PENDING"  # Submitted, possibly included, below threshold
    CONFIRMED = "CONFIRMED"  # Reached the confirmation threshold
    FAILED = "FAILED"  # Aborted on-chain
    TIMEOUT = "TIMEOUT"  # Attempt cap reached, outcome unknown

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionState.PENDING


class PaymentStatus(enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class User(Base):
    """Seller aggregate credited when one of their payments confirms."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stx_address: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    total_earnings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_payments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Payment(Base):
    """
    A payment owned by the payment-link subsystem.
    The monitor only moves it out of PENDING once the linked transaction resolves.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )
    tx_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    net_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="sBTC")
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True
    )
    confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class TrackedTransaction(Base):
    """
    Audit record of one transaction id under observation.
    Rows are never deleted, and a terminal status is never overwritten.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tx_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    status: Mapped[TransactionState] = mapped_column(
        Enum(TransactionState),
        nullable=False,
        default=TransactionState.PENDING,
        index=True,
    )
    payment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # Transfer details (populated once the provider returns them)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    from_address: Mapped[str] = mapped_column(String, nullable=False, default="")
    to_address: Mapped[str] = mapped_column(String, nullable=False, default="")

    block_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_tx_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


def make_engine(settings: DatabaseSettings) -> Engine:
    if settings.url.startswith("sqlite"):
        # Store writes run on worker threads
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in settings.url or settings.url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(settings.url, echo=settings.echo, **kwargs)
    return create_engine(settings.url, echo=settings.echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)
