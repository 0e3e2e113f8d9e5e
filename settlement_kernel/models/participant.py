"""
Participant and ReferralPath -- the referral network.

Responsibility:
    Participant holds tier, volume and commission balances plus the
    materialized ancestor path.  ReferralPath is the closure table derived
    from that path; it answers "who is below X" with an indexed equality
    lookup instead of scanning path lists.

Architecture position:
    Kernel > Models.  Mutated by ReferralEngine (tier, volume, commission,
    originator) and SettlementEngine (admin fields, black-unit flag).

Invariants enforced:
    - address is lower-cased and unique.
    - len(path_ids) is the participant's depth; path_ids[-1] is the referrer.
    - A ReferralPath row (ancestor, descendant, depth) exists for every
      entry of the descendant's path_ids.
    - originator is an ancestor's address or the system root.
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Address, Base, TimestampedBase


class ParticipantRole(str, Enum):
    SYSTEM = "system"
    ADMIN = "admin"
    USER = "user"


class ParticipantTier(str, Enum):
    COMMON = "common"
    BDA = "bda"


class AdminStatus(str, Enum):
    """Lifecycle of an admin account managed through on-chain permission updates."""

    DRAFT = "draft"
    PROCESSING = "processing"
    ACTIVE = "active"
    INACTIVE = "inactive"


class Participant(TimestampedBase):
    """A network participant (buyer, referrer, BDA, admin or the system root)."""

    __tablename__ = "participants"

    __table_args__ = (
        Index("idx_participant_originator", "originator"),
        Index("idx_participant_referrer", "referrer"),
    )

    address: Mapped[str] = mapped_column(Address(), nullable=False, unique=True)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ParticipantRole.USER.value,
    )

    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ParticipantTier.COMMON.value,
    )

    referrer: Mapped[str | None] = mapped_column(Address(), nullable=True)

    originator: Mapped[str | None] = mapped_column(Address(), nullable=True)

    path_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    volume: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    personal_volume: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Volume carried over from before the threshold rules changed
    old_personal_volume: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    commission: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    personal_token_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    direct_referee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    equity_share: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    have_received_black_from_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    admin_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    admin_permissions: Mapped[list | None] = mapped_column(JSON, nullable=True)

    admin_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    @property
    def is_bda(self) -> bool:
        return self.tier == ParticipantTier.BDA.value

    @property
    def is_system(self) -> bool:
        return self.role == ParticipantRole.SYSTEM.value

    def __repr__(self) -> str:
        return f"<Participant {self.address} {self.role}/{self.tier}>"


class ReferralPath(Base):
    """Closure-table row: ``ancestor`` appears in ``descendant``'s path_ids."""

    __tablename__ = "referral_paths"

    __table_args__ = (
        UniqueConstraint("ancestor", "descendant", name="uq_referral_path_pair"),
        Index("idx_referral_path_ancestor", "ancestor"),
    )

    ancestor: Mapped[str] = mapped_column(Address(), nullable=False)

    descendant: Mapped[str] = mapped_column(Address(), nullable=False)

    # 1 = direct referrer
    depth: Mapped[int] = mapped_column(Integer, nullable=False)
