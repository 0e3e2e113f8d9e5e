"""
Referral rules -- pure BDA tier and commission decisions.

Responsibility:
    Every yes/no decision the referral engine makes (promote, demote,
    regain, equity eligibility) and the commission split, expressed as pure
    functions over a ParticipantState snapshot and counts supplied by the
    caller.  No I/O; ReferralEngine loads the inputs and applies the
    results.

Architecture position:
    Kernel > Domain -- pure functional core.

Volume precedence (personal_volume vs old_personal_volume):
    - A buyer is promoted on either volume, except that old_personal_volume
      only counts while the participant has NOT received a restricted unit
      from an admin.  Reaching the threshold on personal_volume always
      promotes and clears the admin-unit flag.
    - A referrer is promoted on personal_volume only, and only while holding
      at least one unit.
    - A transfer receiver regains BDA on either volume, except that a
      flagged participant needs personal_volume.
    - A restricted-unit receiver is promoted on either volume.

Invariants enforced:
    - Commission legs are computed with decimal_math.ratio_of (rounded
      down), so bda + referrer_direct <= revenue whenever the configured
      ratios sum to at most the divisor.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from settlement_kernel.domain.decimal_math import ratio_as_percentage, ratio_of, reaches
from settlement_kernel.domain.dtos import AffiliateInfo, CommissionLeg


class DemotionTrigger(str, Enum):
    """Action that may cost a BDA their tier."""

    REDEMPTION = "redemption"
    TRANSFER_NFT = "transfer_nft"
    TRANSFER_BLACK_NFT = "transfer_black_nft"


class PromotionBasis(str, Enum):
    """Which volume qualified a promotion."""

    PERSONAL_VOLUME = "personal_volume"
    OLD_PERSONAL_VOLUME = "old_personal_volume"


@dataclass(frozen=True)
class ParticipantState:
    """Tier-relevant snapshot of a participant."""

    address: str
    is_bda: bool
    personal_volume: Decimal
    old_personal_volume: Decimal
    have_received_black_from_admin: bool
    direct_referee: int = 0


def buyer_promotion_basis(state: ParticipantState, threshold: Decimal) -> PromotionBasis | None:
    """Promotion basis for a Common buyer after a purchase, or None."""
    if state.is_bda:
        return None
    if reaches(state.personal_volume, threshold):
        return PromotionBasis.PERSONAL_VOLUME
    if not state.have_received_black_from_admin and reaches(state.old_personal_volume, threshold):
        return PromotionBasis.OLD_PERSONAL_VOLUME
    return None


def can_become_bda(state: ParticipantState, owned_units: int, threshold: Decimal) -> bool:
    """A referrer qualifies once their downline volume crosses the threshold and they hold a unit."""
    if owned_units == 0:
        return False
    return not state.is_bda and reaches(state.personal_volume, threshold)


def reached_volume_without_units(state: ParticipantState, owned_units: int, threshold: Decimal) -> bool:
    return owned_units == 0 and reaches(state.personal_volume, threshold)


def can_lose_bda(
    state: ParticipantState,
    trigger: DemotionTrigger,
    owned_units: int,
    restricted_units: int,
    restricted_units_after_redemption: int,
) -> bool:
    """
    Decide whether ``trigger`` costs the participant their BDA tier.

    Counts are taken BEFORE the triggering unit leaves the participant, so
    ``restricted_units == 1`` means the unit being transferred is the last.

    Args:
        owned_units: Units held (locked, unlocked or redeemed).
        restricted_units: Admin-minted units held, including transferred-in ones.
        restricted_units_after_redemption: Admin-minted units still locked or
            unlocked once the redemption is applied.
    """
    if not state.is_bda:
        return False
    if state.have_received_black_from_admin:
        if trigger == DemotionTrigger.REDEMPTION:
            return restricted_units_after_redemption == 0
        if trigger == DemotionTrigger.TRANSFER_NFT:
            return restricted_units == 1 and owned_units == 1
        return restricted_units == 1
    if trigger == DemotionTrigger.REDEMPTION:
        return False
    return owned_units == 1


def can_regain_bda(state: ParticipantState, threshold: Decimal) -> PromotionBasis | None:
    """Promotion basis for the receiver of a regular transfer, or None."""
    if state.is_bda:
        return None
    if reaches(state.personal_volume, threshold):
        return PromotionBasis.PERSONAL_VOLUME
    if not state.have_received_black_from_admin and reaches(state.old_personal_volume, threshold):
        return PromotionBasis.OLD_PERSONAL_VOLUME
    return None


def restricted_receiver_basis(state: ParticipantState, threshold: Decimal) -> PromotionBasis | None:
    """Promotion basis for the receiver of a restricted unit, or None."""
    if state.is_bda:
        return None
    if reaches(state.personal_volume, threshold):
        return PromotionBasis.PERSONAL_VOLUME
    if reaches(state.old_personal_volume, threshold):
        return PromotionBasis.OLD_PERSONAL_VOLUME
    return None


def is_equity_eligible(state: ParticipantState, min_referees: int) -> bool:
    return state.is_bda and state.direct_referee >= min_referees


def compute_affiliate_info(
    revenue: Decimal,
    referrer: str | None,
    originator: str | None,
    originator_is_bda: bool,
    bda_ratio: int,
    commission_ratio: int,
    divisor: int,
) -> AffiliateInfo:
    """
    Split commission for a sale.

    The BDA leg exists only when the buyer's originator currently holds BDA
    tier; the direct-referrer leg exists whenever the buyer has a referrer.
    """
    bda_leg = None
    if originator and originator_is_bda:
        bda_leg = CommissionLeg(
            address=originator,
            commission_fee=ratio_of(revenue, bda_ratio, divisor),
            percentage=ratio_as_percentage(bda_ratio, divisor),
        )
    referrer_leg = None
    if referrer:
        referrer_leg = CommissionLeg(
            address=referrer,
            commission_fee=ratio_of(revenue, commission_ratio, divisor),
            percentage=ratio_as_percentage(commission_ratio, divisor),
        )
    return AffiliateInfo(bda=bda_leg, referrer_direct=referrer_leg)


def upline_chain(address: str, is_system: bool, path_ids: list[str]) -> list[str]:
    """Addresses whose descendants may be re-parented when ``address`` is promoted."""
    if is_system:
        return [address]
    return list(path_ids)


def child_path(parent_path: list[str], parent_address: str) -> list[str]:
    """Materialized path of a new participant referred by ``parent_address``."""
    return [*parent_path, parent_address]
