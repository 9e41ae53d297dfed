"""
Group Booking Command Handlers

Use cases of the group booking domain. Decisions are taken by
GroupBookingAggregator; these handlers load, lock and persist.

Lock order is always equipment row first, then group row.

Commands:
- CreateGroupBookingCommand: Initiator opens a collecting group on a free range
- JoinGroupBookingCommand: Add the caller as a participant
- InitiateParticipantPaymentCommand: Open (or retry) the caller's checkout
- RemoveParticipantCommand: Leave, or remove someone as initiator/admin
- ConfirmGroupBookingCommand: Equipment owner confirms a ready group
- CancelGroupBookingCommand: Initiator, equipment owner or admin cancels
- ExpireGroupBookingCommand: Expire a collecting group past expires_at
- SettleParticipantPayment: Apply a terminal payment (dispatched by PaymentVerifier)
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
import logging

from django.conf import settings
from django.utils import timezone

from apps.bookings.availability import AvailabilityIndex, availability_index, lock_equipment
from apps.group_bookings.domain.aggregator import GroupBookingStatus
from apps.group_bookings.domain.events import (
    GroupBookingCreated,
    ParticipantJoined,
    ParticipantRemoved,
)
from apps.group_bookings.models import GroupBooking, Participant
from apps.payments.commands import SettleParticipantPayment, SettlementReport
from apps.payments.verifier import Checkout, PaymentBinding, PaymentVerifier, get_payment_verifier
from shared.application.context import RequestContext
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import NotFound, PermissionDenied, PostPaymentConflict, ValidationFailed
from shared.domain.value_objects import DateRange

logger = logging.getLogger(__name__)


# ===== Commands =====

@dataclass
class CreateGroupBookingCommand:
    ctx: RequestContext
    equipment_id: int
    start_date: date
    end_date: date
    total_slots: int
    min_participants: int = 2
    expires_at: Optional[datetime] = None
    is_public: bool = True
    notes: str = ''


@dataclass
class JoinGroupBookingCommand:
    ctx: RequestContext
    group_booking_id: int
    share: Optional[Decimal] = None


@dataclass
class InitiateParticipantPaymentCommand:
    ctx: RequestContext
    group_booking_id: int
    email: str = ''


@dataclass
class RemoveParticipantCommand:
    ctx: RequestContext
    group_booking_id: int
    participant_id: int


@dataclass
class ConfirmGroupBookingCommand:
    ctx: RequestContext
    group_booking_id: int


@dataclass
class CancelGroupBookingCommand:
    ctx: RequestContext
    group_booking_id: int
    reason: str = ''


@dataclass
class ExpireGroupBookingCommand:
    group_booking_id: int
    now: Optional[datetime] = None


def _get_group(group_booking_id) -> GroupBooking:
    try:
        return GroupBooking.objects.select_related('equipment', 'initiator').get(pk=group_booking_id)
    except GroupBooking.DoesNotExist:
        raise NotFound("Group booking not found", group_booking_id=group_booking_id)


def _lock_group(group_booking_id) -> GroupBooking:
    return GroupBooking.objects.select_for_update().select_related('equipment').get(pk=group_booking_id)


# ===== Command Handlers =====

class CreateGroupBookingHandler:

    def __init__(self, availability: AvailabilityIndex = availability_index):
        self.availability = availability

    def handle(self, command: CreateGroupBookingCommand) -> GroupBooking:
        ctx = command.ctx
        if ctx.user_id is None:
            raise PermissionDenied("Only signed-in users can start a group booking")

        if command.start_date < timezone.localdate():
            raise ValidationFailed("Start date cannot be in the past")
        try:
            dates = DateRange(command.start_date, command.end_date)
        except ValueError as exc:
            raise ValidationFailed(str(exc))

        if command.min_participants < 2:
            raise ValidationFailed("A group booking needs at least 2 participants")
        if command.total_slots < command.min_participants:
            raise ValidationFailed("Total slots cannot be lower than the minimum number of participants")

        if command.expires_at is not None:
            if command.expires_at <= timezone.now():
                raise ValidationFailed("Expiry cannot be in the past")
            if timezone.localdate(command.expires_at) > dates.start_date:
                raise ValidationFailed("Expiry must be before the start date")

        with DjangoUnitOfWork() as uow:
            equipment = lock_equipment(command.equipment_id)
            if not equipment.is_available:
                raise ValidationFailed("Equipment is not available for booking", equipment_id=equipment.pk)

            self.availability.ensure_available(equipment.pk, dates)

            total = equipment.daily_rate * dates.days
            group = GroupBooking.objects.create(
                equipment=equipment,
                initiator_id=ctx.user_id,
                start_date=dates.start_date,
                end_date=dates.end_date,
                total_days=dates.days,
                price_per_day=equipment.price_per_day,
                total_price=total.amount,
                currency=total.currency,
                total_slots=command.total_slots,
                min_participants=command.min_participants,
                expires_at=command.expires_at,
                is_public=command.is_public,
                notes=command.notes,
            )
            group.add_event(GroupBookingCreated(
                aggregate_id=group.pk,
                group_booking_id=group.pk,
                equipment_id=equipment.pk,
                initiator_id=ctx.user_id,
                total_price=total.amount,
            ))
            uow.collect_events(group)

        logger.info("Group booking %s created for equipment %s (%s), total %s",
                    group.pk, equipment.pk, dates, total)
        return group


class JoinGroupBookingHandler:
    """Membership invariants are checked under the group lock before the insert"""

    def handle(self, command: JoinGroupBookingCommand) -> Participant:
        ctx = command.ctx
        if ctx.user_id is None:
            raise PermissionDenied("Only signed-in users can join a group booking")
        _get_group(command.group_booking_id)
        expire_group_booking_handler.handle(ExpireGroupBookingCommand(command.group_booking_id))

        with DjangoUnitOfWork() as uow:
            group = _lock_group(command.group_booking_id)
            share = group.aggregator().admit(
                ctx.user_id,
                command.share,
                now=timezone.now(),
                expires_at=group.expires_at,
            )
            participant = Participant.objects.create(
                group_booking=group,
                user_id=ctx.user_id,
                share_amount=share,
            )
            group.add_event(ParticipantJoined(
                aggregate_id=group.pk,
                group_booking_id=group.pk,
                participant_id=participant.pk,
                user_id=ctx.user_id,
                share_amount=share,
            ))
            uow.collect_events(group)

        logger.info("User %s joined group booking %s with share %s", ctx.user_id, group.pk, share)
        return participant


class InitiateParticipantPaymentHandler:

    def __init__(self, verifier: Optional[PaymentVerifier] = None):
        self.verifier = verifier or get_payment_verifier()

    def handle(self, command: InitiateParticipantPaymentCommand) -> Checkout:
        ctx = command.ctx
        group = _get_group(command.group_booking_id)
        participant = group.participants.select_related('user').filter(user_id=ctx.user_id).first()
        if participant is None:
            raise NotFound("You are not a participant of this group booking")

        if expire_group_booking_handler.handle(ExpireGroupBookingCommand(group.pk)):
            group.refresh_from_db()
        group.aggregator().ensure_can_pay(participant.state, now=timezone.now(), expires_at=group.expires_at)

        def bind(reference: str) -> PaymentBinding:
            locked_group = _lock_group(group.pk)
            locked = Participant.objects.select_for_update().get(pk=participant.pk)
            locked_group.aggregator().ensure_can_pay(
                locked.state, now=timezone.now(), expires_at=locked_group.expires_at,
            )
            locked.payment_reference = reference
            locked.payment_status = Participant.PaymentStatus.INITIATED
            locked.save(update_fields=['payment_reference', 'payment_status', 'updated_at'])
            return PaymentBinding(group_booking=locked_group, participant=locked, aggregates=(locked_group,))

        return self.verifier.initiate(
            amount=participant.share,
            payer=participant.user,
            email=command.email,
            callback_url=settings.GROUP_PAYMENT_CALLBACK_URL,
            bind=bind,
            reference_prefix='GROUP',
            metadata={'group_booking_id': group.pk, 'participant_id': participant.pk},
        )


class RemoveParticipantHandler:

    def handle(self, command: RemoveParticipantCommand) -> None:
        ctx = command.ctx
        group = _get_group(command.group_booking_id)
        participant = group.participants.filter(pk=command.participant_id).first()
        if participant is None:
            raise NotFound("Participant not found", participant_id=command.participant_id)
        if not (ctx.is_admin or ctx.user_id in (participant.user_id, group.initiator_id)):
            raise PermissionDenied("You cannot remove this participant")

        expire_group_booking_handler.handle(ExpireGroupBookingCommand(group.pk))

        with DjangoUnitOfWork() as uow:
            locked_group = _lock_group(group.pk)
            locked = Participant.objects.select_for_update().get(pk=participant.pk)
            locked_group.aggregator().ensure_removable(locked.state)
            locked.delete()
            locked_group.add_event(ParticipantRemoved(
                aggregate_id=locked_group.pk,
                group_booking_id=locked_group.pk,
                participant_id=command.participant_id,
                user_id=participant.user_id,
                removed_by=ctx.user_id,
            ))
            uow.collect_events(locked_group)

        logger.info("Participant %s removed from group booking %s", command.participant_id, group.pk)


class ConfirmGroupBookingHandler:
    """
    Owner confirmation of a ready group

    Availability is re-checked under the equipment lock. On a conflict the
    cancellation is committed first, then PostPaymentConflict is raised.
    """

    def __init__(self, availability: AvailabilityIndex = availability_index):
        self.availability = availability

    def handle(self, command: ConfirmGroupBookingCommand) -> GroupBooking:
        ctx = command.ctx
        group = _get_group(command.group_booking_id)
        if not (ctx.is_admin or group.equipment.owner_id == ctx.user_id):
            raise PermissionDenied("Only the equipment owner can confirm a group booking")

        with DjangoUnitOfWork() as uow:
            lock_equipment(group.equipment_id)
            group = _lock_group(group.pk)
            has_conflict = False
            if group.status == GroupBookingStatus.READY.value:
                has_conflict = self.availability.has_conflict(
                    group.equipment_id, group.dates, exclude_group_id=group.pk,
                )
            confirmed = group.mark_confirmed(has_conflict=has_conflict)
            group.save()
            uow.collect_events(group)

        if not confirmed:
            logger.error("Post-payment conflict: group booking %s cancelled at confirmation", group.pk)
            raise PostPaymentConflict(group_booking_id=group.pk)

        logger.info("Group booking %s confirmed by owner", group.pk)
        return group


class CancelGroupBookingHandler:

    def handle(self, command: CancelGroupBookingCommand) -> GroupBooking:
        ctx = command.ctx
        group = _get_group(command.group_booking_id)
        if not (ctx.is_admin or ctx.user_id in (group.initiator_id, group.equipment.owner_id)):
            raise PermissionDenied("You cannot cancel this group booking")

        expire_group_booking_handler.handle(ExpireGroupBookingCommand(group.pk))

        with DjangoUnitOfWork() as uow:
            group = _lock_group(group.pk)
            group.mark_cancelled(command.reason)
            group.save()
            uow.collect_events(group)

        logger.info("Group booking %s cancelled by user %s", group.pk, ctx.user_id)
        return group


class ExpireGroupBookingHandler:
    """Idempotent: returns True only for the call that actually expired it"""

    def handle(self, command: ExpireGroupBookingCommand) -> bool:
        with DjangoUnitOfWork() as uow:
            group = GroupBooking.objects.select_for_update().filter(pk=command.group_booking_id).first()
            if group is None or not group.expire_if_due(command.now):
                return False
            group.save(update_fields=['status', 'expired_at', 'updated_at'])
            uow.collect_events(group)

        logger.info("Group booking %s expired", group.pk)
        return True


class SettleParticipantPaymentHandler:
    """
    Apply a terminal participant payment (inside PaymentVerifier's transaction)

    A verified share is never dropped: when the group can no longer take
    it (not collecting, participant gone, share already paid) the report
    asks for a refund instead.
    """

    def __init__(self, availability: AvailabilityIndex = availability_index):
        self.availability = availability

    def handle(self, command: SettleParticipantPayment) -> SettlementReport:
        group = _get_group(command.group_booking_id)

        with DjangoUnitOfWork() as uow:
            lock_equipment(group.equipment_id)
            group = _lock_group(group.pk)
            participant = None
            if command.participant_id is not None:
                participant = (
                    Participant.objects.select_for_update()
                    .filter(pk=command.participant_id, group_booking=group)
                    .first()
                )

            if not command.verified:
                if (participant is not None and participant.payment_reference == command.reference
                        and participant.payment_status != Participant.PaymentStatus.VERIFIED):
                    participant.payment_status = Participant.PaymentStatus.FAILED
                    participant.save(update_fields=['payment_status', 'updated_at'])
                    logger.info("Participant %s payment %s failed; group %s keeps collecting",
                                participant.pk, command.reference, group.pk)
                return self._report(group)

            if group.expire_if_due(command.paid_at or timezone.now()):
                group.save()
                uow.collect_events(group)

            if (participant is None or group.status != GroupBookingStatus.COLLECTING.value
                    or participant.payment_status == Participant.PaymentStatus.VERIFIED):
                if participant is not None:
                    participant.requires_refund = True
                    participant.save(update_fields=['requires_refund', 'updated_at'])
                return self._report(group, requires_refund=True)

            participant.payment_status = Participant.PaymentStatus.VERIFIED
            participant.payment_reference = command.reference
            participant.save(update_fields=['payment_status', 'payment_reference', 'updated_at'])

            post_payment_conflict = False
            if group.refresh_readiness():
                logger.info("Group booking %s is ready for owner confirmation", group.pk)
                if self.availability.has_conflict(group.equipment_id, group.dates, exclude_group_id=group.pk):
                    group.mark_cancelled(
                        "Equipment was reserved by someone else while payments were collected",
                        post_payment_conflict=True,
                    )
                    post_payment_conflict = True
                    logger.error("Post-payment conflict: group booking %s cancelled on readiness", group.pk)
            group.save()
            uow.collect_events(group)

        return self._report(
            group,
            requires_refund=post_payment_conflict,
            post_payment_conflict=post_payment_conflict,
        )

    @staticmethod
    def _report(group: GroupBooking, *, requires_refund=False, post_payment_conflict=False) -> SettlementReport:
        return SettlementReport(
            subject_status=group.status,
            requires_refund=requires_refund,
            post_payment_conflict=post_payment_conflict,
            group_ready=group.is_ready_or_confirmed,
        )


def expire_overdue_group_bookings(queryset=None, now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    overdue = GroupBooking.objects.filter(
        status=GroupBookingStatus.COLLECTING.value,
        expires_at__lte=now,
    )
    if queryset is not None:
        overdue = overdue.filter(pk__in=queryset.values('pk'))

    expired = 0
    for group_id in overdue.values_list('pk', flat=True):
        if expire_group_booking_handler.handle(ExpireGroupBookingCommand(group_id, now=now)):
            expired += 1
    return expired


expire_group_booking_handler = ExpireGroupBookingHandler()
create_group_booking_handler = CreateGroupBookingHandler()
join_group_booking_handler = JoinGroupBookingHandler()
initiate_participant_payment_handler = InitiateParticipantPaymentHandler()
remove_participant_handler = RemoveParticipantHandler()
confirm_group_booking_handler = ConfirmGroupBookingHandler()
cancel_group_booking_handler = CancelGroupBookingHandler()
settle_participant_payment_handler = SettleParticipantPaymentHandler()


def register_handlers(bus) -> None:
    bus.register_command_handler(CreateGroupBookingCommand, create_group_booking_handler.handle)
    bus.register_command_handler(JoinGroupBookingCommand, join_group_booking_handler.handle)
    bus.register_command_handler(InitiateParticipantPaymentCommand, initiate_participant_payment_handler.handle)
    bus.register_command_handler(RemoveParticipantCommand, remove_participant_handler.handle)
    bus.register_command_handler(ConfirmGroupBookingCommand, confirm_group_booking_handler.handle)
    bus.register_command_handler(CancelGroupBookingCommand, cancel_group_booking_handler.handle)
    bus.register_command_handler(ExpireGroupBookingCommand, expire_group_booking_handler.handle)
    bus.register_command_handler(SettleParticipantPayment, settle_participant_payment_handler.handle)
