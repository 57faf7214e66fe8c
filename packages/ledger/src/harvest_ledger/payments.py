"""Payment lifecycle for owner/farmer payments and dealer rental payments.

A payment's ``amount`` is its net (gross minus discount) and is the figure
moved between running totals. Only completed payments move money. Owner
pending is a harvesting balance, so a rental-sourced owner payment raises the
owner's paid total without touching harvesting pending.
"""

from __future__ import annotations

from typing import Any

import structlog

from harvest_ledger.config import get_settings
from harvest_ledger.deltas import DeltaPlan, apply_plan
from harvest_ledger.errors import ValidationError
from harvest_ledger.jobs import ReversalMode
from harvest_ledger.ledger import money
from harvest_ledger.models import (
    BusinessSource,
    Collection,
    Farmer,
    HarvestingJob,
    MachineRental,
    Payment,
    PaymentStatus,
    PaymentType,
    RentalPayment,
    parse_amount,
)
from harvest_ledger.notifications import Channel, LogNotifier, Notifier
from harvest_ledger.store.base import LedgerStore, require

logger = structlog.get_logger(__name__)

PAYMENT_EDITABLE_FIELDS = (
    "status",
    "amount",
    "gross_amount",
    "discount_amount",
    "business_source",
    "payment_date",
    "notes",
)


def _choice(enum_type: Any, value: Any, name: str, default: Any = None) -> Any:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{name} is required")
        return default
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(repr(m.value) for m in enum_type)
        raise ValidationError(f"{name} must be one of {allowed}, got {value!r}") from None


def settle_plan(payment: Payment) -> DeltaPlan:
    """Running-total movement of a payment while it exists."""
    plan = DeltaPlan()
    if not payment.is_completed:
        return plan
    if payment.type == PaymentType.TO_OWNER:
        pending = payment.amount if payment.business_source == BusinessSource.HARVESTING else 0
        plan.add(
            Collection.OWNERS,
            payment.machine_owner_id,
            total_amount_paid=payment.amount,
            total_amount_pending=-pending,
        )
    else:
        plan.add(
            Collection.FARMERS,
            payment.farmer_id,
            total_amount_paid=payment.amount,
            total_amount_pending=-payment.amount,
        )
    return plan


def net_amounts(data: dict[str, Any]) -> tuple[Any, Any, Any]:
    """Return (gross, discount, net); input ``amount`` is the gross figure."""
    gross = parse_amount(data, "gross_amount", default=parse_amount(data, "amount"))
    discount = parse_amount(data, "discount_amount")
    if discount > gross:
        raise ValidationError(f"discount_amount {discount} must be between 0 and {gross}")
    return gross, discount, gross - discount


class PaymentManager:
    """Records, edits and voids payments and their balance effects."""

    def __init__(
        self,
        store: LedgerStore,
        notifier: Notifier | None = None,
        notify_payments: bool | None = None,
        reversal_mode: ReversalMode | None = None,
    ):
        settings = get_settings()
        self._store = store
        self._notifier = notifier or LogNotifier()
        if notify_payments is None:
            notify_payments = settings.notify_payments
        self._notify = notify_payments
        self._reversal_mode: ReversalMode = reversal_mode or settings.job_reversal_mode
        self._logger = logger.bind(component="payment_manager")

    async def _validate_references(self, payment: Payment) -> Payment:
        if payment.machine_owner_id and payment.farmer_id:
            raise ValidationError("A payment references either an owner or a farmer, not both")

        if payment.type == PaymentType.TO_OWNER:
            await require(self._store, Collection.OWNERS.value, payment.machine_owner_id)
        else:
            await require(self._store, Collection.FARMERS.value, payment.farmer_id)

        if payment.job_id:
            job = HarvestingJob.from_record(
                await require(self._store, Collection.JOBS.value, payment.job_id)
            )
            if payment.type == PaymentType.FROM_FARMER and job.farmer_id != payment.farmer_id:
                raise ValidationError(
                    f"Job {job.id} belongs to farmer {job.farmer_id}, not {payment.farmer_id}"
                )
            if payment.machine_id is None:
                payment.machine_id = job.machine_id
        if payment.machine_id:
            await require(self._store, Collection.MACHINES.value, payment.machine_id)
        return payment

    async def create_payment(self, data: dict[str, Any]) -> dict[str, Any]:
        """Record a payment; completed ones settle against the party's pending."""
        gross, discount, net = net_amounts(data)
        payment = Payment(
            type=_choice(PaymentType, data.get("type"), "type"),
            business_source=_choice(
                BusinessSource,
                data.get("business_source"),
                "business_source",
                default=BusinessSource.HARVESTING,
            ),
            gross_amount=gross,
            discount_amount=discount,
            amount=net,
            status=_choice(
                PaymentStatus, data.get("status"), "status", default=PaymentStatus.COMPLETED
            ),
            machine_owner_id=data.get("machine_owner_id"),
            farmer_id=data.get("farmer_id"),
            job_id=data.get("job_id"),
            machine_id=data.get("machine_id"),
            payment_date=data.get("payment_date"),
            notes=data.get("notes"),
        )
        payment = await self._validate_references(payment)

        async with self._store.transaction():
            stored = await self._store.insert(Collection.PAYMENTS.value, payment.to_record())
            await apply_plan(self._store, settle_plan(payment), "create_payment")
        payment.id = stored["id"]

        self._logger.info(
            "payment_created",
            payment_id=stored["id"],
            type=payment.type.value,
            business_source=payment.business_source.value,
            status=payment.status.value,
            amount=str(net),
        )
        if payment.type == PaymentType.FROM_FARMER and payment.is_completed:
            await self._send_receipt(payment)
        return stored

    async def update_payment(self, payment_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Edit status, amounts or bookkeeping fields; the party cannot change."""
        unknown = set(patch) - set(PAYMENT_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update payment fields: {', '.join(sorted(unknown))}")

        record = await require(self._store, Collection.PAYMENTS.value, payment_id)
        old = Payment.from_record(record)
        changes: dict[str, Any] = {k: v for k, v in patch.items() if k in ("payment_date", "notes")}

        new = Payment.from_record(record)
        if any(k in patch for k in ("amount", "gross_amount", "discount_amount")):
            gross = patch.get("gross_amount", patch.get("amount", old.gross_amount))
            gross, discount, net = net_amounts(
                {
                    "gross_amount": gross,
                    "discount_amount": patch.get("discount_amount", old.discount_amount),
                }
            )
            new.gross_amount, new.discount_amount, new.amount = gross, discount, net
            changes.update(gross_amount=gross, discount_amount=discount, amount=net)
        if "status" in patch:
            new.status = _choice(PaymentStatus, patch["status"], "status")
            changes["status"] = new.status
        if "business_source" in patch:
            new.business_source = _choice(
                BusinessSource, patch["business_source"], "business_source"
            )
            changes["business_source"] = new.business_source

        plan = settle_plan(old).inverse().extend(settle_plan(new))
        async with self._store.transaction():
            stored = await self._store.update(Collection.PAYMENTS.value, payment_id, changes)
            await apply_plan(self._store, plan, "update_payment")

        self._logger.info("payment_updated", payment_id=payment_id, fields=sorted(patch))
        if (
            new.type == PaymentType.FROM_FARMER
            and new.is_completed
            and not old.is_completed
        ):
            await self._send_receipt(new)
        return stored

    async def delete_payment(self, payment_id: str) -> dict[str, Any]:
        """Void a payment, reversing exactly the net amount it settled."""
        payment = Payment.from_record(
            await require(self._store, Collection.PAYMENTS.value, payment_id)
        )
        async with self._store.transaction():
            await apply_plan(self._store, settle_plan(payment).inverse(), "delete_payment")
            await self._store.delete(Collection.PAYMENTS.value, payment_id)

        self._logger.info("payment_deleted", payment_id=payment_id, amount=str(payment.amount))
        return {"id": payment_id, "deleted": True}

    # === Rental payments ===

    def _rental_plan(self, payment: RentalPayment, reverse: bool = False) -> DeltaPlan:
        """Dealer movement of a rental payment.

        In ``exact`` mode the stored dealer pending is a plain running sum that
        may go negative on overpayment, so deleting a payment restores exactly
        what creating it removed. ``legacy`` mode clamps each decrement at zero.
        """
        plan = DeltaPlan()
        if payment.status != PaymentStatus.COMPLETED:
            return plan
        if self._reversal_mode == "exact":
            sign = -1 if reverse else 1
            return plan.add(
                Collection.DEALERS,
                payment.dealer_id,
                total_amount_paid=sign * payment.amount,
                total_amount_pending=-sign * payment.amount,
            )
        if reverse:
            plan.add(
                Collection.DEALERS, payment.dealer_id, floor_zero=True,
                total_amount_paid=-payment.amount,
            )
            plan.add(Collection.DEALERS, payment.dealer_id, total_amount_pending=payment.amount)
        else:
            plan.add(Collection.DEALERS, payment.dealer_id, total_amount_paid=payment.amount)
            plan.add(
                Collection.DEALERS, payment.dealer_id, floor_zero=True,
                total_amount_pending=-payment.amount,
            )
        return plan

    async def create_rental_payment(self, data: dict[str, Any]) -> dict[str, Any]:
        """Record money from a dealer against one of their rentals."""
        rental = MachineRental.from_record(
            await require(self._store, Collection.RENTALS.value, data.get("rental_id"))
        )
        dealer_id = data.get("dealer_id") or rental.dealer_id
        if dealer_id != rental.dealer_id:
            raise ValidationError(f"Rental {rental.id} belongs to dealer {rental.dealer_id}")
        await require(self._store, Collection.DEALERS.value, dealer_id)

        payment = RentalPayment(
            rental_id=rental.id,
            dealer_id=dealer_id,
            amount=parse_amount(data, "amount"),
            status=_choice(
                PaymentStatus, data.get("status"), "status", default=PaymentStatus.COMPLETED
            ),
            payment_date=data.get("payment_date"),
        )
        async with self._store.transaction():
            stored = await self._store.insert(Collection.RENTAL_PAYMENTS.value, payment.to_record())
            await apply_plan(self._store, self._rental_plan(payment), "create_rental_payment")

        self._logger.info(
            "rental_payment_created",
            payment_id=stored["id"],
            rental_id=rental.id,
            dealer_id=dealer_id,
            amount=str(payment.amount),
        )
        return stored

    async def delete_rental_payment(self, payment_id: str) -> dict[str, Any]:
        payment = RentalPayment.from_record(
            await require(self._store, Collection.RENTAL_PAYMENTS.value, payment_id)
        )
        async with self._store.transaction():
            await apply_plan(
                self._store,
                self._rental_plan(payment, reverse=True),
                "delete_rental_payment",
            )
            await self._store.delete(Collection.RENTAL_PAYMENTS.value, payment_id)

        self._logger.info("rental_payment_deleted", payment_id=payment_id)
        return {"id": payment_id, "deleted": True}

    async def _send_receipt(self, payment: Payment) -> None:
        if not self._notify:
            return
        record = await self._store.find_one(Collection.FARMERS.value, {"id": payment.farmer_id})
        if record is None:
            return
        farmer = Farmer.from_record(record)
        if not farmer.phone:
            return
        message = f"Payment of {money(payment.amount)} received. Thank you, {farmer.name}."
        try:
            result = await self._notifier.send(Channel.SMS, farmer.phone, message)
        except Exception as e:
            self._logger.error("payment_receipt_failed", payment_id=payment.id, error=str(e))
            return
        if not result.success:
            self._logger.warning(
                "payment_receipt_failed", payment_id=payment.id, error=result.error
            )
