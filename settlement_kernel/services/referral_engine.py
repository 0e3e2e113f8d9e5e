"""
ReferralEngine -- applies BDA tier and commission rules to participants.

Responsibility:
    Registers participants into the referral tree, credits purchase volume
    and commission, and promotes or demotes participants between the
    Common and BDA tiers.  Every decision is delegated to the pure
    functions in ``settlement_kernel.domain.referral_rules``; this class
    only loads their inputs and writes their results.

Architecture position:
    Kernel > Services.  Runs inside the settlement unit of work that
    triggered it (a Buy, a Transfer or a Redemption).  Never commits.

Invariants enforced:
    - A ReferralPath row exists for every ancestor in a participant's
      path_ids, written when the participant is registered.
    - Promotion re-parents descendants with one bulk UPDATE driven by the
      closure table.  Addresses are compared exactly, lower-cased.
    - Demotion hands the demoted participant's direct BDA dependants to
      the demoted participant's own originator.
    - Commission is credited only to the address recorded in the
      transaction's affiliate snapshot, and only if it still matches the
      participant's current referrer / originator.

Failure modes:
    - ReferralError when a participant the recompute depends on (buyer,
      referrer, originator) is missing.  The settlement engine runs the
      recompute in a savepoint and logs this error without failing the
      sale.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from settlement_config.schema import ReferralSettings
from settlement_kernel.domain.decimal_math import reaches, to_decimal
from settlement_kernel.domain.dtos import AffiliateInfo, Notice, NoticeTemplate
from settlement_kernel.domain.referral_rules import (
    DemotionTrigger,
    ParticipantState,
    PromotionBasis,
    buyer_promotion_basis,
    can_become_bda,
    can_lose_bda,
    can_regain_bda,
    child_path,
    is_equity_eligible,
    reached_volume_without_units,
    restricted_receiver_basis,
    upline_chain,
)
from settlement_kernel.exceptions import ParticipantNotFoundError, ReferralError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.participant import (
    Participant,
    ParticipantRole,
    ParticipantTier,
    ReferralPath,
)
from settlement_kernel.models.transaction import SettlementTransaction
from settlement_kernel.services.ledger_store import LedgerStore, normalize_address

logger = get_logger("services.referral_engine")


def participant_state(participant: Participant) -> ParticipantState:
    return ParticipantState(
        address=participant.address,
        is_bda=participant.is_bda,
        personal_volume=to_decimal(participant.personal_volume),
        old_personal_volume=to_decimal(participant.old_personal_volume),
        have_received_black_from_admin=bool(participant.have_received_black_from_admin),
        direct_referee=participant.direct_referee or 0,
    )


class ReferralEngine:
    """
    BDA promotion, demotion and commission accounting.

    Contract:
        Methods return the notices the caller should dispatch once the
        enclosing unit of work commits.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT lock descendant rows during re-parenting.  Concurrent
          promotions on overlapping subtrees may interleave.
    """

    def __init__(
        self,
        session: Session,
        settings: ReferralSettings | None = None,
        store: LedgerStore | None = None,
    ):
        self._session = session
        self._settings = settings or ReferralSettings()
        self._store = store or LedgerStore(session)

    @property
    def threshold(self) -> Decimal:
        return self._settings.bda_threshold

    # -------------------------------------------------------------------------
    # Tree maintenance
    # -------------------------------------------------------------------------

    def register_participant(
        self,
        address: str,
        referrer: str | None = None,
        role: ParticipantRole = ParticipantRole.USER,
    ) -> Participant:
        """
        Add a participant under ``referrer`` and write its closure rows.

        The originator is the referrer itself when the referrer is a BDA or
        the system root, otherwise the referrer's originator.

        Raises:
            ParticipantNotFoundError: ``referrer`` is not registered.
        """
        address = normalize_address(address)
        path: list[str] = []
        originator = None
        parent = None
        if referrer:
            parent = self._store.find_participant(referrer, for_update=True)
            if parent is None:
                raise ParticipantNotFoundError(normalize_address(referrer))
            path = child_path(list(parent.path_ids or []), parent.address)
            originator = parent.address if (parent.is_bda or parent.is_system) else parent.originator
            parent.direct_referee = (parent.direct_referee or 0) + 1

        participant = Participant(
            address=address,
            role=role.value,
            tier=ParticipantTier.COMMON.value,
            referrer=parent.address if parent else None,
            originator=originator,
            path_ids=path,
        )
        self._session.add(participant)
        self._session.add_all(
            ReferralPath(ancestor=ancestor, descendant=address, depth=depth)
            for depth, ancestor in enumerate(reversed(path), start=1)
        )
        self._session.flush()

        logger.info(
            "participant_registered",
            extra={
                "address": address,
                "referrer": participant.referrer,
                "originator": originator,
                "depth": len(path),
            },
        )
        return participant

    def descendants_of(self, address: str) -> list[str]:
        return list(
            self._session.execute(
                select(ReferralPath.descendant)
                .where(ReferralPath.ancestor == normalize_address(address))
                .order_by(ReferralPath.depth)
            ).scalars()
        )

    # -------------------------------------------------------------------------
    # Purchase
    # -------------------------------------------------------------------------

    def apply_purchase(self, transaction: SettlementTransaction) -> list[Notice]:
        """
        Credit a settled Buy to the buyer, the referrer and the originator.

        Raises:
            ReferralError: buyer, referrer or originator is not registered.
        """
        notices: list[Notice] = []
        revenue = to_decimal(transaction.revenue)

        buyer = self._require(transaction.to_address, "buyer")
        buyer.volume = to_decimal(buyer.volume) + revenue
        buyer.personal_volume = to_decimal(buyer.personal_volume) + revenue

        basis = buyer_promotion_basis(participant_state(buyer), self.threshold)
        if basis is not None:
            self.promote(buyer, basis)
            notices.extend(self._promotion_notices(buyer.address, basis))

        if not buyer.referrer or not buyer.originator:
            self._session.flush()
            return notices

        referrer = self._require(buyer.referrer, "referrer")
        originator = self._require(buyer.originator, "originator")

        referrer.personal_volume = to_decimal(referrer.personal_volume) + revenue
        referrer.old_personal_volume = to_decimal(referrer.old_personal_volume) + revenue
        referrer.personal_token_sold = (referrer.personal_token_sold or 0) + transaction.quantity
        if originator is not referrer:
            originator.personal_volume = to_decimal(originator.personal_volume) + revenue

        affiliate = AffiliateInfo.from_json(transaction.affiliate_info)
        if affiliate.bda is not None and affiliate.bda.address == originator.address:
            originator.commission = to_decimal(originator.commission) + affiliate.bda.commission_fee
        if affiliate.referrer_direct is not None and affiliate.referrer_direct.address == referrer.address:
            referrer.commission = (
                to_decimal(referrer.commission) + affiliate.referrer_direct.commission_fee
            )

        state = participant_state(referrer)
        owned = self._store.count_owned_units(referrer.address)
        if reached_volume_without_units(state, owned, self.threshold):
            notices.append(Notice(
                NoticeTemplate.BDA_VOLUME_WITHOUT_TOKEN.value,
                {"to_address": referrer.address},
            ))
        if not referrer.is_bda and reaches(referrer.personal_volume, self.threshold):
            referrer.have_received_black_from_admin = False
        if can_become_bda(state, owned, self.threshold):
            self.promote(referrer, PromotionBasis.PERSONAL_VOLUME)
            notices.extend(self._promotion_notices(referrer.address, PromotionBasis.PERSONAL_VOLUME))

        self._session.flush()
        logger.info(
            "purchase_volume_applied",
            extra={
                "buyer": buyer.address,
                "referrer": referrer.address,
                "originator": originator.address,
                "revenue": revenue,
            },
        )
        return notices

    # -------------------------------------------------------------------------
    # Tier changes
    # -------------------------------------------------------------------------

    def promote(self, participant: Participant, basis: PromotionBasis) -> int:
        """
        Promote to BDA and re-parent descendants.

        Descendants (via the closure table) that are not deleted and whose
        originator lies in the participant's upline chain get the
        participant as their new originator.

        Returns:
            Number of re-parented descendants.
        """
        participant.tier = ParticipantTier.BDA.value
        if basis == PromotionBasis.PERSONAL_VOLUME:
            participant.have_received_black_from_admin = False

        chain = upline_chain(participant.address, participant.is_system, list(participant.path_ids or []))
        reparented = 0
        if chain:
            descendants = select(ReferralPath.descendant).where(
                ReferralPath.ancestor == participant.address
            )
            result = self._session.execute(
                update(Participant)
                .where(
                    Participant.address.in_(descendants),
                    Participant.is_deleted.is_(False),
                    Participant.originator.in_(chain),
                )
                .values(originator=participant.address)
                .execution_options(synchronize_session="fetch")
            )
            reparented = result.rowcount
        self._session.flush()

        logger.info(
            "bda_promoted",
            extra={
                "address": participant.address,
                "basis": basis.value,
                "reparented": reparented,
            },
        )
        return reparented

    def demote(self, participant: Participant, trigger: DemotionTrigger) -> int:
        """
        Drop to Common, zero personal volume and equity share.

        Participants whose originator was the demoted address take the
        demoted participant's originator instead.

        Returns:
            Number of re-parented dependants.
        """
        participant.tier = ParticipantTier.COMMON.value
        participant.personal_volume = Decimal("0")
        participant.equity_share = Decimal("0")

        result = self._session.execute(
            update(Participant)
            .where(
                Participant.originator == participant.address,
                Participant.is_deleted.is_(False),
                Participant.role == ParticipantRole.USER.value,
            )
            .values(originator=participant.originator)
            .execution_options(synchronize_session="fetch")
        )
        self._session.flush()

        logger.info(
            "bda_demoted",
            extra={
                "address": participant.address,
                "trigger": trigger.value,
                "reparented": result.rowcount,
            },
        )
        return result.rowcount

    def evaluate_demotion(self, address: str, trigger: DemotionTrigger) -> list[Notice]:
        """
        Apply the demotion rule for ``trigger``.

        Must run BEFORE the triggering unit leaves the participant: the
        holding counts are read as they stand.  Unregistered addresses
        (external wallets) are ignored.
        """
        participant = self._store.find_participant(address, for_update=True)
        if participant is None:
            return []
        decided = can_lose_bda(
            participant_state(participant),
            trigger,
            owned_units=self._store.count_owned_units(participant.address),
            restricted_units=self._store.count_restricted_units(participant.address),
            restricted_units_after_redemption=self._store.count_restricted_units_unredeemed(
                participant.address
            ),
        )
        if not decided:
            return []
        self.demote(participant, trigger)
        return [Notice(
            NoticeTemplate.BDA_DEMOTED.value,
            {"to_address": participant.address, "trigger": trigger.value},
        )]

    def apply_transfer_receiver(self, address: str, restricted: bool) -> list[Notice]:
        """
        Promote the receiver of a transferred unit when its volume qualifies.

        Restricted units promote on either volume; regular units follow the
        regain rule.  Unregistered receivers are ignored.
        """
        participant = self._store.find_participant(address, for_update=True)
        if participant is None:
            return []
        state = participant_state(participant)
        if restricted:
            basis = restricted_receiver_basis(state, self.threshold)
        else:
            basis = can_regain_bda(state, self.threshold)
        if basis is None:
            return []
        self.promote(participant, basis)
        return self._promotion_notices(participant.address, basis)

    def is_equity_eligible(self, address: str) -> bool:
        participant = self._store.find_participant(address)
        if participant is None:
            return False
        return is_equity_eligible(participant_state(participant), self._settings.equity_min_referees)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _require(self, address: str | None, role: str) -> Participant:
        participant = self._store.find_participant(address, for_update=True)
        if participant is None:
            raise ReferralError(normalize_address(address) or "", f"{role} is not registered")
        return participant

    @staticmethod
    def _promotion_notices(address: str, basis: PromotionBasis) -> list[Notice]:
        template = (
            NoticeTemplate.BDA_PROMOTED
            if basis == PromotionBasis.PERSONAL_VOLUME
            else NoticeTemplate.BDA_PROMOTED_BY_LEGACY_VOLUME
        )
        return [
            Notice(template.value, {"to_address": address}),
            Notice(NoticeTemplate.ADMIN_BDA_PROMOTED.value, {"to_address": address}),
        ]
