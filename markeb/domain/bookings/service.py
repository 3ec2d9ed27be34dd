"""
Booking service - business logic for the booking lifecycle.

Every mutating operation follows the same sequence:
    load -> lock on the booking reference -> re-read -> guards -> write -> side effects

Side effects (payments, emails, storage folders) run after the state change
has been written. Payment failures after a committed state change do not roll
the booking back; the record is flagged for manual review instead.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from ... import email_service
from ...config import SITE_URL
from ...email_service import notify
from ...errors import BookingConflict, PaymentFailed, RecordNotFound, UpstreamError, ValidationFailed
from ...services.payment_bridge import PaymentBridge, from_pence
from ...services.storage import DropboxClient
from ..discounts.service import DiscountResult, DiscountService
from ..users.repository import UserRepository
from . import models as f
from .availability import AvailabilityService
from .fees import (
    FEE_TOLERANCE,
    FREE_CANCELLATION_WINDOW,
    FeeQuote,
    calculate_cancellation_fee,
    fee_matches,
    hours_until,
    refund_note,
    to_money,
)
from .lifecycle import (
    BookingLocks,
    BookingStatus,
    PaymentStatus,
    ensure_not_cancelled,
    ensure_outside_fee_window,
    ensure_owner,
)
from .models import BUSINESS_TZ, Booking, combine_schedule
from .pricing import PriceBreakdown, addons_total, extra_bedroom_fee, price_booking
from .schemas import BookingCreate, ServiceChange

logger = logging.getLogger(__name__)

CUSTOMER = "Customer"
ADMIN = "Admin"

REQUIRED_FIELDS = (
    "postcode",
    "propertyAddress",
    "territory",
    "date",
    "time",
    "service",
    "clientName",
    "clientEmail",
    "clientPhone",
    "totalPrice",
)

# Checkout metadata type values
CHECKOUT_BOOKING = "booking"
CHECKOUT_RESERVED_PAYMENT = "reserved_booking_payment"
CHECKOUT_CANCELLATION_FEE = "cancellation_fee"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _money(value: Decimal) -> float:
    return float(to_money(value))


class BookingService:
    """Service layer for booking business logic"""

    def __init__(
        self,
        repo,
        payments: PaymentBridge,
        locks: BookingLocks,
        users: Optional[UserRepository] = None,
        discounts: Optional[DiscountService] = None,
        storage: Optional[DropboxClient] = None,
        availability: Optional[AvailabilityService] = None,
        mailer=email_service,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.payments = payments
        self.locks = locks
        self.users = users
        self.discounts = discounts
        self.storage = storage
        self.availability = availability
        self.mailer = mailer
        self.clock = clock

    # ========================================================================
    # LOADING
    # ========================================================================

    async def _load(self, booking_id: str) -> Booking:
        try:
            return await self.repo.get(booking_id)
        except RecordNotFound:
            raise RecordNotFound("Booking not found", {"bookingId": booking_id}) from None

    async def _load_by_reference(self, reference: str) -> Booking:
        booking = await self.repo.find_by_reference(reference)
        if not booking:
            raise RecordNotFound("Booking not found", {"bookingRef": reference})
        return booking

    def _annotate(self, booking: Booking, now: datetime) -> dict[str, Any]:
        summary = booking.summary()
        try:
            scheduled_at = booking.scheduled_at
        except ValueError:
            logger.warning(f"⚠️ Booking {booking.reference or booking.record_id} has no usable date/time")
            return summary
        quote = calculate_cancellation_fee(scheduled_at, now, booking.final_price)
        summary.update(
            hoursUntil=round(hours_until(scheduled_at, now), 1),
            canCancelFree=quote.is_free and not booking.is_cancelled,
            cancellationFee=_money(quote.fee),
            cancellationChargePercentage=quote.fee_percentage,
        )
        return summary

    async def _flag_for_review(self, booking: Booking, note: str) -> None:
        logger.warning(f"⚠️ Booking {booking.reference} needs manual review: {note}")
        try:
            await self.repo.update(booking.record_id, {f.MANUAL_REVIEW_REQUIRED: True, f.MANUAL_REVIEW_NOTE: note})
        except UpstreamError as e:
            logger.error(f"❌ Could not flag booking {booking.reference} for review: {e.message}")

    async def _stripe(self, call, *args, **kwargs):
        # The stripe SDK blocks; keep it off the event loop
        return await asyncio.to_thread(call, *args, **kwargs)

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_booking(self, reference: str, client_email: str) -> dict[str, Any]:
        if not reference or not client_email:
            raise ValidationFailed("Booking reference and email are required")
        booking = await self.repo.find_by_reference(reference, client_email)
        if not booking:
            raise RecordNotFound("Booking not found")
        return {"success": True, "booking": self._annotate(booking, self.clock())}

    async def list_client_bookings(self, client_email: str) -> dict[str, Any]:
        if not client_email:
            raise ValidationFailed("Email is required")
        now = self.clock()
        bookings = await self.repo.list_for_client(client_email)
        return {"success": True, "bookings": [self._annotate(b, now) for b in bookings]}

    async def admin_list_bookings(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        region: Optional[str] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> dict[str, Any]:
        now = self.clock()
        bookings = await self.repo.search(start_date, end_date, region, status, payment_status)
        summaries = [self._annotate(b, now) for b in bookings]
        for booking, summary in zip(bookings, summaries):
            summary["manualReviewRequired"] = bool(booking.fields.get(f.MANUAL_REVIEW_REQUIRED))

        today = now.astimezone(BUSINESS_TZ).date().isoformat()
        return {
            "success": True,
            "bookings": summaries,
            "total": len(bookings),
            "stats": {
                "paid": sum(1 for b in bookings if b.is_paid),
                "reserved": sum(1 for b in bookings if not b.is_paid and not b.is_cancelled),
                "cancelled": sum(1 for b in bookings if b.is_cancelled),
                "upcoming": sum(1 for b in bookings if (b.date or "") >= today and not b.is_cancelled),
                "needsReview": sum(1 for s in summaries if s["manualReviewRequired"]),
            },
        }

    async def specialist_schedule(self, specialist: str) -> dict[str, Any]:
        if not specialist:
            raise ValidationFailed("Specialist name is required")
        bookings = await self.repo.list_for_specialist(specialist)
        logger.info(f"📋 {len(bookings)} bookings for specialist {specialist}")
        return {"success": True, "bookings": [b.schedule_view() for b in bookings], "total": len(bookings)}

    # ========================================================================
    # CREATION
    # ========================================================================

    async def _price(self, data: BookingCreate, now: datetime) -> tuple[PriceBreakdown, Optional[DiscountResult]]:
        missing = [name for name in REQUIRED_FIELDS if getattr(data, name) in (None, "")]
        if missing:
            raise ValidationFailed("Missing required fields", {"missingFields": missing})

        addons = [a.model_dump() for a in data.addons]
        base_price = data.basePrice
        if base_price is None:
            base_price = to_money(data.totalPrice) - extra_bedroom_fee(data.bedrooms) - addons_total(addons)
        breakdown = price_booking(base_price, data.bedrooms, addons)
        if not fee_matches(breakdown.total, data.totalPrice, FEE_TOLERANCE):
            logger.warning(f"⚠️ Submitted total £{data.totalPrice} does not match computed £{breakdown.total}")
            raise ValidationFailed("Total price does not match the selected service", {"expectedTotal": _money(breakdown.total)})

        discount = None
        if data.discountCode and self.discounts:
            discount = await self.discounts.validate(
                data.discountCode, breakdown.total, now, region=data.territory, service_id=data.serviceId
            )
            breakdown = PriceBreakdown(
                base_price=breakdown.base_price,
                extra_bedroom_fee=breakdown.extra_bedroom_fee,
                addons_price=breakdown.addons_price,
                total=breakdown.total,
                discount_amount=discount.discount_amount,
                final=discount.final_price,
            )
        return breakdown, discount

    def _booking_fields(
        self, data: BookingCreate, reference: str, breakdown: PriceBreakdown, discount: Optional[DiscountResult], now: datetime
    ) -> dict[str, Any]:
        scheduled_at = combine_schedule(data.date, data.time)
        fields = {
            f.REFERENCE: reference,
            f.POSTCODE: data.postcode,
            f.PROPERTY_ADDRESS: data.propertyAddress,
            f.REGION: data.territory,
            f.TERRITORY: data.territory,
            f.MEDIA_SPECIALIST: data.mediaSpecialist or "",
            f.DATE: data.date,
            f.TIME: data.time,
            f.SERVICE: data.serviceId or data.service,
            f.SERVICE_ID: data.serviceId or data.service,
            f.SERVICE_NAME: data.service,
            f.DURATION: data.duration,
            f.BEDROOMS: data.bedrooms,
            f.BASE_PRICE: _money(breakdown.base_price),
            f.EXTRA_BEDROOM_FEE: _money(breakdown.extra_bedroom_fee),
            f.ADDONS: json.dumps([{"name": a.name, "price": _money(a.price)} for a in data.addons]),
            f.ADDONS_PRICE: _money(breakdown.addons_price),
            f.TOTAL_PRICE: _money(breakdown.total),
            f.PRICE_BEFORE_DISCOUNT: _money(breakdown.total),
            f.FINAL_PRICE: _money(breakdown.final),
            f.CLIENT_NAME: data.clientName,
            f.CLIENT_EMAIL: data.clientEmail,
            f.CLIENT_PHONE: data.clientPhone,
            f.CLIENT_NOTES: data.clientNotes or "",
            f.CREATED_DATE: _iso(now),
            f.CANCELLATION_ALLOWED_UNTIL: _iso(scheduled_at - FREE_CANCELLATION_WINDOW),
        }
        if discount:
            fields.update(
                {
                    f.DISCOUNT_CODE: discount.code,
                    f.DISCOUNT_TYPE: discount.discount_type,
                    f.DISCOUNT_VALUE: float(discount.discount_value),
                    f.DISCOUNT_AMOUNT: _money(discount.discount_amount),
                }
            )
        return fields

    async def _ensure_slot_available(self, data: BookingCreate, now: datetime, exclude: Optional[str] = None) -> None:
        if not self.availability:
            return
        available = await self.availability.is_available(
            data.postcode, data.territory, data.date, data.time, now, exclude_record_id=exclude
        )
        if not available:
            raise BookingConflict("Selected time slot is no longer available")

    async def create_booking(self, data: BookingCreate) -> dict[str, Any]:
        """Direct booking without up-front card payment"""
        now = self.clock()
        breakdown, discount = await self._price(data, now)
        await self._ensure_slot_available(data, now)

        user = await self.users.find_by_email(data.clientEmail) if self.users else None
        privileged = bool(user and user.can_reserve_without_payment)

        reference = f"BK-{int(now.timestamp() * 1000)}"
        fields = self._booking_fields(data, reference, breakdown, discount, now)
        if privileged:
            # Trusted accounts are booked straight in and invoiced after delivery
            booking_status, payment_status = BookingStatus.BOOKED, PaymentStatus.RESERVED
        else:
            booking_status, payment_status = BookingStatus.RESERVED, PaymentStatus.PENDING
        fields[f.BOOKING_STATUS] = booking_status.value
        fields[f.PAYMENT_STATUS] = payment_status.value
        fields[f.PAYMENT_METHOD] = "Account" if privileged else "Card"

        if data.paymentMethodId:
            customer_id = await self._stripe(
                self.payments.ensure_customer,
                data.clientEmail, data.clientName, data.clientPhone, data.paymentMethodId
            )
            fields[f.STRIPE_CUSTOMER_ID] = customer_id
            fields[f.STRIPE_PAYMENT_METHOD_ID] = data.paymentMethodId

        logger.info(f"📥 Creating booking {reference} for {data.clientEmail} ({booking_status.value})")
        booking = await self.repo.create(fields)

        if discount:
            await self.discounts.record_use(discount.record_id)

        email_sent = await notify(self.mailer.send_booking_confirmation(booking.summary(), payment_status.value))
        if privileged:
            await self._create_delivery_folders(booking)

        return {
            "success": True,
            "bookingId": booking.record_id,
            "bookingRef": reference,
            "bookingStatus": booking_status.value,
            "paymentStatus": payment_status.value,
            "finalPrice": _money(breakdown.final),
            "emailSent": email_sent,
        }

    async def start_checkout(self, data: BookingCreate) -> dict[str, Any]:
        """Stripe Checkout for a booking paid up front; the booking is created by the webhook"""
        now = self.clock()
        breakdown, discount = await self._price(data, now)
        await self._ensure_slot_available(data, now)

        line_items = [
            self.payments.line_item(
                data.service, breakdown.base_price, f"{data.date} at {data.time} - {data.propertyAddress}"
            )
        ]
        if breakdown.extra_bedroom_fee > 0:
            extra = max(0, data.bedrooms - 4)
            line_items.append(
                self.payments.line_item("Extra Bedrooms", breakdown.extra_bedroom_fee, f"{extra} additional bedroom(s)")
            )
        for addon in data.addons:
            if addon.price > 0:
                line_items.append(self.payments.line_item(addon.name, addon.price))

        metadata = {
            "type": CHECKOUT_BOOKING,
            "postcode": data.postcode,
            "propertyAddress": data.propertyAddress,
            "territory": data.territory,
            "mediaSpecialist": data.mediaSpecialist,
            "date": data.date,
            "time": data.time,
            "serviceId": data.serviceId,
            "service": data.service,
            "duration": data.duration,
            "bedrooms": data.bedrooms,
            "basePrice": breakdown.base_price,
            "clientName": data.clientName,
            "clientEmail": data.clientEmail,
            "clientPhone": data.clientPhone,
            "clientNotes": (data.clientNotes or "")[:500],
            "addons": json.dumps([{"name": a.name, "price": _money(a.price)} for a in data.addons])[:500],
            "discountCode": discount.code if discount else "",
            "discountId": discount.record_id if discount else "",
        }
        if discount:
            # Stripe Checkout has no negative line items; the discount goes on as a coupon
            line_items = [
                self.payments.line_item(
                    data.service,
                    breakdown.final,
                    f"{data.date} at {data.time} - {data.propertyAddress} (code {discount.code})",
                )
            ]

        session_id, url = await self._stripe(
            self.payments.create_checkout_session,
            line_items=line_items,
            success_url=f"{SITE_URL}/booking-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{SITE_URL}/booking?cancelled=true",
            metadata=metadata,
            customer_email=data.clientEmail,
            save_card=True,
        )
        return {"success": True, "sessionId": session_id, "url": url}

    # ========================================================================
    # CANCELLATION
    # ========================================================================

    async def _cancel(
        self,
        booking: Booking,
        quote: FeeQuote,
        reason: str,
        cancelled_by: str,
        refund_amount: Decimal,
        fee_payment_id: Optional[str] = None,
        send_email: bool = True,
    ) -> dict[str, Any]:
        """Write the cancellation, then refund and notify"""
        now = self.clock()
        fields = {
            f.BOOKING_STATUS: BookingStatus.CANCELLED.value,
            f.LEGACY_STATUS: BookingStatus.CANCELLED.value,
            f.CANCELLATION_DATE: _iso(now),
            f.CANCELLATION_REASON: reason or "Customer requested",
            f.CANCELLATION_CHARGE: _money(quote.fee),
            f.CANCELLATION_CHARGE_PERCENT: quote.fee_percentage,
            f.CANCELLED_BY: cancelled_by,
            f.REFUND_AMOUNT: _money(refund_amount),
        }
        if fee_payment_id:
            fields[f.CANCELLATION_PAYMENT_ID] = fee_payment_id
        await self.repo.update(booking.record_id, fields)
        logger.info(f"✅ Booking {booking.reference} cancelled by {cancelled_by} (fee £{quote.fee})")

        refund_status = "not_applicable"
        refund_id = None
        if refund_amount > 0 and booking.is_paid:
            if not booking.payment_intent_id:
                refund_status = "refund_required"
                await self._flag_for_review(booking, f"Refund of £{refund_amount} due but no payment on record")
            else:
                try:
                    refund_id = await self._stripe(
                        self.payments.refund,
                        booking.payment_intent_id,
                        refund_amount,
                        metadata={"bookingRef": booking.reference, "type": "cancellation_refund"},
                    )
                    refund_status = "processed"
                    await self.repo.update(booking.record_id, {f.REFUND_ID: refund_id, f.REFUND_PROCESSED: True})
                except PaymentFailed as e:
                    refund_status = "refund_failed"
                    await self._flag_for_review(booking, f"Refund of £{refund_amount} failed: {e.extra.get('details', e.message)}")

        email_sent = False
        if send_email:
            email_sent = await notify(
                self.mailer.send_cancellation_confirmation(booking.summary(), quote.fee, refund_amount, refund_note(quote))
            )

        return {
            "success": True,
            "message": "Booking cancelled successfully",
            "bookingRef": booking.reference,
            "cancellationCharge": _money(quote.fee),
            "cancellationChargePercentage": quote.fee_percentage,
            "refundAmount": _money(refund_amount),
            "refundStatus": refund_status,
            "refundId": refund_id,
            "emailSent": email_sent,
        }

    async def cancel_booking(self, booking_id: str, client_email: str, reason: Optional[str] = None) -> dict[str, Any]:
        """Free self-service cancellation (24 hours or more before the slot)"""
        if not booking_id or not client_email:
            raise ValidationFailed("Booking ID and email are required")

        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            now = self.clock()
            ensure_owner(booking, client_email)
            ensure_not_cancelled(booking)
            ensure_outside_fee_window(booking, now, "cancel")

            quote = calculate_cancellation_fee(booking.scheduled_at, now, booking.final_price)
            return await self._cancel(booking, quote, reason, CUSTOMER, refund_amount=quote.refund)

    async def start_paid_cancellation(
        self, reference: str, client_email: str, submitted_fee, reason: Optional[str] = None
    ) -> dict[str, Any]:
        """Late cancellation: collect the fee, or withhold it from a captured payment"""
        booking = await self._load_by_reference(reference)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking.record_id)
            now = self.clock()
            ensure_owner(booking, client_email)
            ensure_not_cancelled(booking)

            quote = calculate_cancellation_fee(booking.scheduled_at, now, booking.final_price)
            if quote.is_free:
                raise BookingConflict(
                    "No cancellation fee applies to this booking. Please use free cancellation.",
                    {"requiresPayment": False},
                )
            if not fee_matches(quote.fee, submitted_fee):
                logger.warning(
                    f"⚠️ Fee mismatch on {reference}: submitted £{submitted_fee}, expected £{quote.fee}"
                )
                raise BookingConflict("Cancellation fee mismatch", {"expectedFee": _money(quote.fee)})

            if booking.is_paid:
                # Fee comes out of the captured payment; charging again would double-bill
                result = await self._cancel(booking, quote, reason, CUSTOMER, refund_amount=quote.refund)
                return {**result, "requiresCheckout": False}

            session_id, url = await self._stripe(
                self.payments.create_checkout_session,
                line_items=[
                    self.payments.line_item(
                        f"Cancellation Fee - {booking.reference}",
                        quote.fee,
                        f"{quote.fee_percentage}% cancellation fee for {booking.service_name} on {booking.date}",
                    )
                ],
                success_url=f"{SITE_URL}/cancellation-success?ref={booking.reference}&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{SITE_URL}/manage-booking?ref={booking.reference}",
                metadata={
                    "type": CHECKOUT_CANCELLATION_FEE,
                    "bookingId": booking.record_id,
                    "bookingRef": booking.reference,
                    "cancellationFee": quote.fee,
                    "originalTotalPrice": booking.final_price,
                    "reason": reason or "Late cancellation with fee",
                },
                client_reference_id=booking.record_id,
                customer_email=booking.client_email,
            )
            await self.repo.update(booking.record_id, {f.STRIPE_SESSION_ID: session_id})
            return {
                "success": True,
                "requiresCheckout": True,
                "sessionId": session_id,
                "url": url,
                **quote.as_dict(),
            }

    async def complete_paid_cancellation(
        self,
        booking_id: str,
        fee_payment_id: Optional[str],
        fee,
        reason: Optional[str] = None,
    ) -> dict[str, Any]:
        """Finalise a cancellation whose fee has been paid. Safe to call more than once."""
        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            if booking.is_cancelled:
                logger.info(f"ℹ️ Booking {booking.reference} already cancelled - nothing to do")
                return {"success": True, "alreadyCancelled": True, "bookingRef": booking.reference}

            fee = to_money(fee)
            total = booking.final_price
            percentage = int((fee / total * 100).to_integral_value()) if total > 0 else 100
            quote = FeeQuote(fee=fee, fee_percentage=percentage, refund=max(total - fee, Decimal("0")))
            # The booking itself was never paid, so there is nothing to give back
            return await self._cancel(
                booking,
                quote,
                reason or "Late cancellation with fee",
                CUSTOMER,
                refund_amount=Decimal("0"),
                fee_payment_id=fee_payment_id,
            )

    async def process_cancellation_session(self, session_id: str) -> dict[str, Any]:
        """Return leg of the cancellation checkout (the webhook may not have arrived yet)"""
        if not session_id:
            raise ValidationFailed("Session ID is required")
        session = await self._stripe(self.payments.retrieve_checkout_session, session_id)
        if session.get("payment_status") != "paid":
            raise BookingConflict("Payment not completed")
        metadata = session.get("metadata") or {}
        if metadata.get("type") != CHECKOUT_CANCELLATION_FEE:
            raise ValidationFailed("Session is not a cancellation payment")
        return await self.complete_paid_cancellation(
            metadata["bookingId"],
            _payment_intent_id(session),
            metadata.get("cancellationFee") or from_pence(session.get("amount_total")),
            metadata.get("reason"),
        )

    async def admin_cancel(self, booking_id: str, reason: str, send_email: bool = True) -> dict[str, Any]:
        """Cancellation by staff; same fee rule, no ownership or window checks"""
        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            ensure_not_cancelled(booking)
            quote = calculate_cancellation_fee(booking.scheduled_at, self.clock(), booking.final_price)
            # Unpaid bookings only have the fee recorded; nothing is charged here
            refund = quote.refund if booking.is_paid else Decimal("0")
            return await self._cancel(booking, quote, reason, ADMIN, refund_amount=refund, send_email=send_email)

    # ========================================================================
    # RESCHEDULING
    # ========================================================================

    async def _reschedule(
        self, booking: Booking, new_date: str, new_time: str, rescheduled_by: str, send_email: bool
    ) -> dict[str, Any]:
        now = self.clock()
        new_at = combine_schedule(new_date, new_time)
        old_date, old_time = booking.date, booking.time
        updated = await self.repo.update(
            booking.record_id,
            {
                f.DATE: new_date,
                f.TIME: new_time,
                f.RESCHEDULED: True,
                f.RESCHEDULED_BY: rescheduled_by,
                f.ORIGINAL_DATE: booking.fields.get(f.ORIGINAL_DATE) or old_date,
                f.ORIGINAL_TIME: booking.fields.get(f.ORIGINAL_TIME) or old_time,
                f.RESCHEDULE_DATE: _iso(now),
                f.CANCELLATION_ALLOWED_UNTIL: _iso(new_at - FREE_CANCELLATION_WINDOW),
            },
        )
        logger.info(f"✅ Booking {booking.reference} moved {old_date} {old_time} -> {new_date} {new_time}")

        email_sent = False
        if send_email:
            email_sent = await notify(self.mailer.send_reschedule_confirmation(updated.summary(), old_date, old_time))

        return {
            "success": True,
            "message": "Booking rescheduled successfully",
            "bookingRef": booking.reference,
            "newDate": new_date,
            "newTime": new_time,
            "oldDate": old_date,
            "oldTime": old_time,
            "emailSent": email_sent,
        }

    async def reschedule_booking(self, reference: str, client_email: str, new_date: str, new_time: str) -> dict[str, Any]:
        booking = await self._load_by_reference(reference)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking.record_id)
            now = self.clock()
            ensure_owner(booking, client_email)
            ensure_not_cancelled(booking)
            ensure_outside_fee_window(booking, now, "reschedule")

            if combine_schedule(new_date, new_time) - now < FREE_CANCELLATION_WINDOW:
                raise ValidationFailed("New booking time must be at least 24 hours from now")

            if self.availability:
                available = await self.availability.is_available(
                    booking.fields.get(f.POSTCODE) or "",
                    booking.fields.get(f.REGION) or "",
                    new_date,
                    new_time,
                    now,
                    exclude_record_id=booking.record_id,
                )
                if not available:
                    raise BookingConflict("Selected time slot is not available")

            return await self._reschedule(booking, new_date, new_time, CUSTOMER, send_email=True)

    async def admin_reschedule(self, booking_id: str, new_date: str, new_time: str, send_email: bool = True) -> dict[str, Any]:
        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            ensure_not_cancelled(booking)
            return await self._reschedule(booking, new_date, new_time, ADMIN, send_email)

    # ========================================================================
    # SERVICE CHANGES
    # ========================================================================

    async def _settle_difference(self, booking: Booking, difference: Decimal) -> tuple[str, Optional[dict]]:
        """Charge or refund the price change on a paid booking"""
        if abs(difference) <= FEE_TOLERANCE or not booking.is_paid:
            return "none", None

        metadata = {"bookingRef": booking.reference, "type": "service_modification"}

        if difference > 0:
            if not (booking.payment_method_id and booking.customer_id):
                await self._flag_for_review(booking, f"Additional £{difference} due after service change")
                return "charge_required", {"amount": _money(difference)}
            try:
                payment_id = await self._stripe(
                    self.payments.charge,
                    amount=difference,
                    payment_method_id=booking.payment_method_id,
                    customer_id=booking.customer_id,
                    description=f"Service modification charge for {booking.reference}",
                    metadata=metadata,
                    receipt_email=booking.client_email,
                )
            except PaymentFailed as e:
                await self._flag_for_review(booking, f"Additional charge of £{difference} failed: {e.message}")
                return "charge_failed", {"error": e.message}
            await self.repo.update(booking.record_id, {f.ADJUSTMENT_TRANSACTION_ID: payment_id})
            return "charge", {"chargeAmount": _money(difference), "paymentIntentId": payment_id}

        refund_amount = -difference
        if not booking.payment_intent_id:
            await self._flag_for_review(booking, f"Refund of £{refund_amount} due after service change")
            return "refund_required", {"amount": _money(refund_amount)}
        try:
            refund_id = await self._stripe(self.payments.refund, booking.payment_intent_id, refund_amount, metadata=metadata)
        except PaymentFailed as e:
            await self._flag_for_review(booking, f"Refund of £{refund_amount} failed: {e.message}")
            return "refund_failed", {"error": e.message}
        await self.repo.update(booking.record_id, {f.ADJUSTMENT_TRANSACTION_ID: refund_id})
        return "refund", {"refundAmount": _money(refund_amount), "refundId": refund_id}

    async def _modify(self, booking: Booking, change: ServiceChange, send_email: bool) -> dict[str, Any]:
        addons = [a.model_dump() for a in change.addons]
        if booking.discount_code:
            breakdown = price_booking(
                change.newServicePrice,
                change.bedrooms,
                addons,
                discount_type=booking.fields.get(f.DISCOUNT_TYPE),
                discount_value=booking.fields.get(f.DISCOUNT_VALUE),
                previous_discount=booking.discount_amount,
                previous_total=booking.total_price,
            )
        else:
            breakdown = price_booking(change.newServicePrice, change.bedrooms, addons)

        old_final = booking.final_price
        difference = breakdown.final - old_final

        updated = await self.repo.update(
            booking.record_id,
            {
                f.SERVICE: change.newServiceId,
                f.SERVICE_ID: change.newServiceId,
                f.SERVICE_NAME: change.newServiceName,
                f.DURATION: change.newServiceDuration or booking.fields.get(f.DURATION),
                f.BASE_PRICE: _money(breakdown.base_price),
                f.BEDROOMS: change.bedrooms,
                f.EXTRA_BEDROOM_FEE: _money(breakdown.extra_bedroom_fee),
                f.ADDONS: json.dumps([{"name": a["name"], "price": _money(a["price"])} for a in addons]),
                f.ADDONS_PRICE: _money(breakdown.addons_price),
                f.TOTAL_PRICE: _money(breakdown.total),
                f.PRICE_BEFORE_DISCOUNT: _money(breakdown.total),
                f.DISCOUNT_AMOUNT: _money(breakdown.discount_amount),
                f.FINAL_PRICE: _money(breakdown.final),
                f.SERVICE_MODIFIED: True,
                f.SERVICE_MODIFIED_DATE: _iso(self.clock()),
                f.PREVIOUS_SERVICE: booking.service_name,
                f.PREVIOUS_PRICE: _money(old_final),
                f.PRICE_ADJUSTMENT: _money(difference),
            },
        )
        logger.info(f"✅ Booking {booking.reference} service -> {change.newServiceName} (£{old_final} -> £{breakdown.final})")

        payment_action, payment_details = await self._settle_difference(booking, difference)

        email_sent = False
        if send_email:
            email_sent = await notify(
                self.mailer.send_service_modification(updated.summary(), payment_action, difference)
            )

        return {
            "success": True,
            "message": "Booking modified successfully",
            "bookingRef": booking.reference,
            "newService": change.newServiceName,
            "newTotal": _money(breakdown.final),
            "priceDifference": _money(difference),
            "paymentAction": payment_action,
            "paymentDetails": payment_details,
            "emailSent": email_sent,
        }

    async def modify_service(self, booking_id: str, client_email: str, change: ServiceChange) -> dict[str, Any]:
        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            ensure_owner(booking, client_email)
            ensure_not_cancelled(booking)
            return await self._modify(booking, change, send_email=True)

    async def admin_modify_service(self, booking_id: str, change: ServiceChange, send_email: bool = True) -> dict[str, Any]:
        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            ensure_not_cancelled(booking)
            return await self._modify(booking, change, send_email)

    # ========================================================================
    # PAYMENT COLLECTION
    # ========================================================================

    async def charge_reserved_booking(self, booking_id: str) -> dict[str, Any]:
        """Charge the saved card for a booking that was taken without payment"""
        booking = await self._load(booking_id)
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking_id)
            ensure_not_cancelled(booking)

            if booking.is_paid:
                raise BookingConflict("This booking has already been paid", {"bookingRef": booking.reference})
            if not booking.payment_method_id:
                raise BookingConflict(
                    "No payment method on file",
                    {
                        "bookingRef": booking.reference,
                        "userMessage": 'This booking does not have a saved payment method. Please use "Send Payment Link" instead.',
                    },
                )
            amount = booking.final_price
            if amount <= 0:
                raise ValidationFailed("Invalid booking price", {"bookingRef": booking.reference})

            customer_id = booking.customer_id
            if not customer_id:
                customer_id = await self._stripe(
                    self.payments.ensure_customer,
                    booking.client_email,
                    booking.client_name,
                    booking.fields.get(f.CLIENT_PHONE),
                    booking.payment_method_id,
                )
                await self.repo.update(booking.record_id, {f.STRIPE_CUSTOMER_ID: customer_id})

            try:
                payment_id = await self._stripe(
                    self.payments.charge,
                    amount=amount,
                    payment_method_id=booking.payment_method_id,
                    customer_id=customer_id,
                    description=f"{booking.service_name} - {booking.reference}",
                    metadata={
                        "bookingId": booking.record_id,
                        "bookingRef": booking.reference,
                        "type": "pending_payment_charge",
                    },
                    receipt_email=booking.client_email,
                )
            except PaymentFailed as e:
                intent = e.extra.get("paymentIntentId") or "none"
                await self._flag_for_review(booking, f"Charge of £{amount} failed ({intent}): {e.message}")
                raise

            try:
                updated = await self._mark_paid(booking, payment_id, amount)
            except UpstreamError as e:
                # Money was taken but the record still reads unpaid
                await self._flag_for_review(booking, f"Charged £{amount} ({payment_id}) but not marked paid: {e.message}")
                raise

        email_sent = await notify(self.mailer.send_payment_confirmation(updated.summary(), amount))
        return {
            "success": True,
            "bookingRef": booking.reference,
            "paymentIntentId": payment_id,
            "amountCharged": _money(amount),
            "emailSent": email_sent,
        }

    async def _mark_paid(self, booking: Booking, payment_id: Optional[str], amount: Decimal) -> Booking:
        fields = {
            f.PAYMENT_STATUS: PaymentStatus.PAID.value,
            f.BOOKING_STATUS: BookingStatus.CONFIRMED.value,
            f.PAYMENT_DATE: _iso(self.clock()),
            f.AMOUNT_PAID: _money(amount),
        }
        if payment_id:
            fields[f.STRIPE_PAYMENT_INTENT_ID] = payment_id
        updated = await self.repo.update(booking.record_id, fields)
        logger.info(f"✅ Booking {booking.reference} paid (£{amount})")
        await self._create_delivery_folders(updated)
        return updated

    async def send_payment_link(self, booking_id: str) -> dict[str, Any]:
        booking = await self._load(booking_id)
        ensure_not_cancelled(booking)
        if booking.payment_status != PaymentStatus.RESERVED.value:
            raise BookingConflict("This booking is not in Reserved status")

        url = await self._stripe(
            self.payments.create_payment_link,
            name=booking.service_name or "Property Photography",
            description=f"Booking {booking.reference} - {booking.date} at {booking.time}",
            amount=booking.final_price,
            redirect_url=f"{SITE_URL}/booking-success?ref={booking.reference}",
            metadata={
                "type": CHECKOUT_RESERVED_PAYMENT,
                "bookingId": booking.record_id,
                "bookingRef": booking.reference,
                "clientEmail": booking.client_email,
            },
        )
        email_sent = await notify(self.mailer.send_payment_link(booking.summary(), booking.final_price, url))
        return {"success": True, "bookingRef": booking.reference, "paymentUrl": url, "emailSent": email_sent}

    # ========================================================================
    # WEBHOOKS
    # ========================================================================

    async def handle_checkout_completed(self, session) -> dict[str, Any]:
        """Dispatch a completed Checkout session on its metadata type"""
        metadata = session.get("metadata") or {}
        checkout_type = metadata.get("type")
        logger.info(f"💳 Checkout {session.get('id')} completed (type={checkout_type})")

        if checkout_type == CHECKOUT_CANCELLATION_FEE:
            return await self.complete_paid_cancellation(
                metadata["bookingId"],
                _payment_intent_id(session),
                metadata.get("cancellationFee") or from_pence(session.get("amount_total")),
                metadata.get("reason"),
            )
        if checkout_type == CHECKOUT_RESERVED_PAYMENT:
            return await self._complete_reserved_payment(session, metadata)
        if checkout_type == CHECKOUT_BOOKING:
            return await self._create_paid_booking(session, metadata)

        logger.warning(f"⚠️ Ignoring checkout session with unknown type {checkout_type!r}")
        return {"success": True, "ignored": True}

    async def _complete_reserved_payment(self, session, metadata: dict) -> dict[str, Any]:
        booking = await self._load(metadata["bookingId"])
        async with self.locks.hold(booking.reference):
            booking = await self._load(booking.record_id)
            if booking.is_paid:
                return {"success": True, "alreadyPaid": True, "bookingRef": booking.reference}
            amount = from_pence(session.get("amount_total"))
            updated = await self._mark_paid(booking, _payment_intent_id(session), amount)
        await notify(self.mailer.send_payment_confirmation(updated.summary(), amount))
        return {"success": True, "bookingRef": booking.reference}

    async def _create_paid_booking(self, session, metadata: dict) -> dict[str, Any]:
        session_id = session.get("id")
        async with self.locks.hold(f"session:{session_id}"):
            existing = await self.repo.find_by_session(session_id)
            if existing:
                return {"success": True, "alreadyCreated": True, "bookingRef": existing.reference}

            now = self.clock()
            amount = from_pence(session.get("amount_total"))
            addons = json.loads(metadata.get("addons") or "[]")
            breakdown = price_booking(metadata.get("basePrice") or amount, int(metadata.get("bedrooms") or 0), addons)
            reference = f"BK-{int(now.timestamp() * 1000)}"
            payment_intent_id = _payment_intent_id(session)

            fields = {
                f.REFERENCE: reference,
                f.POSTCODE: metadata.get("postcode"),
                f.PROPERTY_ADDRESS: metadata.get("propertyAddress"),
                f.REGION: metadata.get("territory"),
                f.TERRITORY: metadata.get("territory"),
                f.MEDIA_SPECIALIST: metadata.get("mediaSpecialist") or "",
                f.DATE: metadata.get("date"),
                f.TIME: metadata.get("time"),
                f.SERVICE: metadata.get("serviceId") or metadata.get("service"),
                f.SERVICE_ID: metadata.get("serviceId") or metadata.get("service"),
                f.SERVICE_NAME: metadata.get("service") or metadata.get("serviceId"),
                f.DURATION: int(metadata.get("duration") or 0) or None,
                f.BEDROOMS: int(metadata.get("bedrooms") or 0),
                f.BASE_PRICE: _money(breakdown.base_price),
                f.EXTRA_BEDROOM_FEE: _money(breakdown.extra_bedroom_fee),
                f.ADDONS: json.dumps(addons),
                f.ADDONS_PRICE: _money(breakdown.addons_price),
                f.TOTAL_PRICE: _money(breakdown.total),
                f.PRICE_BEFORE_DISCOUNT: _money(breakdown.total),
                f.FINAL_PRICE: _money(amount),
                f.DISCOUNT_AMOUNT: _money(max(breakdown.total - amount, Decimal("0"))),
                f.CLIENT_NAME: metadata.get("clientName"),
                f.CLIENT_EMAIL: metadata.get("clientEmail"),
                f.CLIENT_PHONE: metadata.get("clientPhone"),
                f.CLIENT_NOTES: metadata.get("clientNotes") or "",
                f.BOOKING_STATUS: BookingStatus.CONFIRMED.value,
                f.PAYMENT_STATUS: PaymentStatus.PAID.value,
                f.PAYMENT_METHOD: "Stripe",
                f.STRIPE_SESSION_ID: session_id,
                f.STRIPE_PAYMENT_INTENT_ID: payment_intent_id,
                f.STRIPE_CUSTOMER_ID: session.get("customer"),
                f.STRIPE_PAYMENT_METHOD_ID: _payment_method_id(session),
                f.AMOUNT_PAID: _money(amount),
                f.PAYMENT_DATE: _iso(now),
                f.CREATED_DATE: _iso(now),
            }
            if metadata.get("discountCode"):
                fields[f.DISCOUNT_CODE] = metadata["discountCode"]
            if metadata.get("date") and metadata.get("time"):
                scheduled_at = combine_schedule(metadata["date"], metadata["time"])
                fields[f.CANCELLATION_ALLOWED_UNTIL] = _iso(scheduled_at - FREE_CANCELLATION_WINDOW)

            booking = await self.repo.create({k: v for k, v in fields.items() if v is not None})

            if metadata.get("discountId") and self.discounts:
                try:
                    await self.discounts.record_use(metadata["discountId"])
                except UpstreamError as e:
                    # Retries find the booking already created and skip this
                    logger.error(f"❌ Usage of discount {metadata.get('discountCode')} not recorded: {e.message}")

        logger.info(f"✅ Paid booking {reference} created from checkout {session_id}")
        await notify(self.mailer.send_booking_confirmation(booking.summary(), PaymentStatus.PAID.value))
        await self._create_delivery_folders(booking)
        return {"success": True, "bookingId": booking.record_id, "bookingRef": reference}

    # ========================================================================
    # STORAGE
    # ========================================================================

    async def _create_delivery_folders(self, booking: Booking) -> Optional[str]:
        """Best effort: a confirmed booking still stands if Dropbox is down"""
        if not self.storage or not self.storage.tokens.configured:
            return None

        company = booking.client_name
        if self.users:
            user = await self.users.find_by_email(booking.client_email)
            if user and user.company:
                company = user.company

        try:
            folders = await self.storage.create_booking_folders(
                booking.property_address, company, booking.fields.get(f.POSTCODE) or ""
            )
            await self.repo.update(booking.record_id, {f.DELIVERY_LINK: folders["sharedLink"]})
        except UpstreamError as e:
            logger.error(f"❌ Delivery folders for {booking.reference} not created: {e.message}")
            return None
        return folders["sharedLink"]


def _payment_intent_id(session) -> Optional[str]:
    intent = session.get("payment_intent")
    if isinstance(intent, str) or intent is None:
        return intent
    return intent.get("id")


def _payment_method_id(session) -> Optional[str]:
    intent = session.get("payment_intent")
    if isinstance(intent, str) or intent is None:
        return None
    method = intent.get("payment_method")
    return method if isinstance(method, str) or method is None else method.get("id")
