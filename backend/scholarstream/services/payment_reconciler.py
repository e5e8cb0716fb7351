"""
ScholarStream Backend - Payment Reconciler
============================================

What:  Turns payment-provider signals into the application's durable
       ``payment_status = paid``, exactly once.
Who:   Called by the payment router (intent, checkout, verify, webhook) and
       by ``PATCH /api/applications/{id}/payment``.
How:   Every entry point resolves a provider intent, checks it, and ends in
       ``ApplicationLifecycle.mark_paid``: one conditional UPDATE whose
       affected-row count says whether this call did the transition.

Entry points:

    create_payment_intent ──┐                    (amount gate, metadata)
    create_checkout_session ┘

    confirm_intent ─────────┐
    verify_session ─────────┼──▶ _reconcile ──▶ lifecycle.mark_paid
    handle_webhook ─────────┘

Checks on the caller paths, in order:
    1. Application exists (404) and the caller may pay for it (403)
    2. Intent resolves at the provider (404 unknown / 502 provider failure)
    3. Intent status is ``succeeded`` (400 "Payment not successful")
    4. Intent metadata names this application (400 on mismatch or absence)
    5. Conditional unpaid → paid; already paid is reported, not an error

The webhook path skips (1)'s ownership check. Its permanent problems are
acknowledged and logged; retryable ones propagate as non-2xx so the provider
redelivers.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from scholarstream.config import settings
from scholarstream.exceptions import (
    ForbiddenError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from scholarstream.models.application import Application, PaymentStatus
from scholarstream.models.scholarship import Scholarship
from scholarstream.services.application_store import ApplicationStore, application_store, parse_id
from scholarstream.services.authorization import Action, is_owner, require
from scholarstream.services.identity import Actor
from scholarstream.services.lifecycle import ApplicationLifecycle, PaymentTransition, application_lifecycle
from scholarstream.services.payment_provider import (
    EVENT_CHECKOUT_COMPLETED,
    EVENT_INTENT_SUCCEEDED,
    METADATA_APPLICATION_ID,
    METADATA_USER_ID,
    PaymentProvider,
    ProviderIntent,
    ProviderSession,
)

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_NAME = "Scholarship Application Fee"

_CENT = Decimal("0.01")


def to_minor_units(application_fees, service_charge) -> int:
    """(fees + charge) in cents, rounded half-up."""
    total = Decimal(str(application_fees or 0)) + Decimal(str(service_charge or 0))
    return int((total.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def metadata_matches(intent: ProviderIntent, application_id: uuid.UUID) -> bool:
    ref = intent.application_ref
    if not ref:
        return False
    try:
        return uuid.UUID(ref) == application_id
    except ValueError:
        return False


@dataclass(frozen=True)
class WebhookOutcome:
    """``outcome`` is one of: paid, already_paid, ignored."""

    outcome: str
    detail: Optional[str] = None
    application_id: Optional[uuid.UUID] = None

    PAID = "paid"
    ALREADY_PAID = "already_paid"
    IGNORED = "ignored"


class PaymentReconciler:

    def __init__(
        self,
        lifecycle: Optional[ApplicationLifecycle] = None,
        store: Optional[ApplicationStore] = None,
    ):
        self.lifecycle = lifecycle or application_lifecycle
        self.store = store or application_store

    # ── Charge creation ───────────────────────────────────────────────────

    async def create_payment_intent(
        self, db: AsyncSession, actor: Actor, provider: PaymentProvider, application_ref
    ) -> ProviderIntent:
        """
        Create a provider intent for the application's total charge.

        Raises:
            NotFoundError    application absent or malformed reference
            ForbiddenError   caller does not own the application
            ValidationError  already paid, or total below the minimum charge
        """
        application = await self._payable_application(db, actor, application_ref)
        amount = self._checked_amount(application)
        return await provider.create_intent(
            amount=amount,
            currency=settings.payment_currency,
            metadata=self._metadata(application),
        )

    async def create_checkout_session(
        self, db: AsyncSession, actor: Actor, provider: PaymentProvider, application_ref
    ) -> ProviderSession:
        """Same gates as ``create_payment_intent``, but for a hosted checkout page."""
        application = await self._payable_application(db, actor, application_ref)
        amount = self._checked_amount(application)
        product_name = await self._product_name(db, application)
        base = settings.checkout_base_url
        return await provider.create_session(
            amount=amount,
            currency=settings.payment_currency,
            product_name=product_name,
            metadata=self._metadata(application),
            # {CHECKOUT_SESSION_ID} is substituted by Stripe on redirect
            success_url=f"{base}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/payment/failed",
        )

    # ── Caller-facing confirmation ────────────────────────────────────────

    async def confirm_intent(
        self,
        db: AsyncSession,
        actor: Actor,
        provider: PaymentProvider,
        application_ref,
        intent_ref: str,
        require_owner: bool = True,
    ) -> PaymentTransition:
        """
        Confirm a client-side payment by intent reference.

        ``require_owner`` is True for ``/payment/success`` (owner only) and
        False for the applications PATCH route, where SetPayment applies
        (owner, Moderator or Admin).
        """
        application = await self.store.get_or_404(db, application_ref)
        self._authorize(actor, application, require_owner)

        intent = await provider.retrieve_intent(intent_ref)
        return await self._reconcile(db, application.id, intent, source="confirm")

    async def verify_session(
        self, db: AsyncSession, actor: Actor, provider: PaymentProvider, session_ref: str
    ) -> PaymentTransition:
        """
        Confirm a hosted checkout after the customer was redirected back.

        The session's metadata names the application; the session must belong
        to the caller.
        """
        session = await provider.retrieve_session(session_ref)
        if not session.application_ref:
            raise ValidationError(
                "Checkout session carries no application reference",
                context={"session_id": session.id},
            )
        application = await self.store.get_or_404(db, session.application_ref)
        self._authorize(actor, application, require_owner=True)

        intent = await self._session_intent(provider, session)
        if intent is None:
            raise ValidationError(
                "Payment not successful",
                context={"session_id": session.id, "reason": "no payment intent"},
            )
        return await self._reconcile(db, application.id, _with_session_ref(intent, session), source="verify")

    # ── Webhook ───────────────────────────────────────────────────────────

    async def handle_webhook(
        self,
        db: AsyncSession,
        provider: PaymentProvider,
        payload: bytes,
        signature: Optional[str],
    ) -> WebhookOutcome:
        """
        Verify and apply one provider event.

        Raises (non-2xx, provider redelivers):
            ValidationError             bad signature or payload (400)
            PaymentNotConfiguredError   no webhook secret (503)
            PaymentProviderError        retryable provider failure (502)
            CircuitBreakerOpenError     provider failing repeatedly (503)
            DatabaseError               (500)

        Everything else is acknowledged with outcome ``ignored`` and logged.
        """
        event = provider.construct_event(payload, signature)
        logger.info("Webhook event %s received: type=%s object=%s", event.id, event.type, event.object_id)

        if event.type not in (EVENT_INTENT_SUCCEEDED, EVENT_CHECKOUT_COMPLETED):
            return self._ignored(event.id, f"unhandled event type '{event.type}'")
        if not event.object_id:
            return self._ignored(event.id, "event carries no object reference")

        try:
            if event.type == EVENT_INTENT_SUCCEEDED:
                intent = await provider.retrieve_intent(event.object_id)
            else:
                session = await provider.retrieve_session(event.object_id)
                intent = await self._session_intent(provider, session)
                if intent is None:
                    return self._ignored(event.id, f"session {session.id} has no payment intent")
                intent = _with_session_ref(intent, session)
        except NotFoundError as e:
            return self._ignored(event.id, e.message)
        except PaymentProviderError as e:
            if e.retryable:
                raise
            return self._ignored(event.id, e.message)

        if not intent.succeeded:
            return self._ignored(event.id, f"intent {intent.id} status is '{intent.status}'")
        if not intent.application_ref:
            return self._ignored(event.id, f"intent {intent.id} carries no application reference")
        try:
            application_id = parse_id(intent.application_ref, "application")
        except NotFoundError:
            return self._ignored(event.id, f"intent {intent.id} has a malformed application reference")
        if await self.store.get(db, application_id) is None:
            return self._ignored(event.id, f"application {application_id} not found")

        transition = await self.lifecycle.mark_paid(db, application_id)
        logger.info(
            "Webhook event %s reconciled intent %s for application %s (%s)",
            event.id,
            intent.id,
            application_id,
            "paid" if transition.transitioned else "already paid",
        )
        return WebhookOutcome(
            outcome=WebhookOutcome.PAID if transition.transitioned else WebhookOutcome.ALREADY_PAID,
            application_id=application_id,
        )

    # ── Internals ─────────────────────────────────────────────────────────

    async def _reconcile(
        self, db: AsyncSession, application_id: uuid.UUID, intent: ProviderIntent, source: str
    ) -> PaymentTransition:
        if not intent.succeeded:
            logger.info(
                "Payment not successful for application %s via %s: intent %s is '%s'",
                application_id,
                source,
                intent.id,
                intent.status,
            )
            raise ValidationError(
                "Payment not successful",
                context={"intent_id": intent.id, "status": intent.status},
            )
        if not metadata_matches(intent, application_id):
            logger.warning(
                "Intent %s metadata (%s) does not match application %s",
                intent.id,
                intent.application_ref,
                application_id,
            )
            raise ValidationError(
                "Payment does not match the application",
                context={"intent_id": intent.id, "metadata_application": intent.application_ref},
            )
        transition = await self.lifecycle.mark_paid(db, application_id)
        logger.info(
            "Payment reconciled via %s: application=%s intent=%s transitioned=%s",
            source,
            application_id,
            intent.id,
            transition.transitioned,
        )
        return transition

    async def _payable_application(self, db: AsyncSession, actor: Actor, application_ref) -> Application:
        application = await self.store.get_or_404(db, application_ref)
        self._authorize(actor, application, require_owner=True)
        if application.payment_status is PaymentStatus.PAID:
            raise ValidationError(
                "Application is already paid",
                field="paymentStatus",
                context={"application_id": str(application.id)},
            )
        return application

    @staticmethod
    def _authorize(actor: Actor, application: Application, require_owner: bool) -> None:
        if require_owner:
            if not is_owner(actor, application):
                raise ForbiddenError(
                    context={"actor_id": str(actor.id), "application_id": str(application.id)}
                )
        else:
            require(actor, application, Action.SET_PAYMENT)

    @staticmethod
    def _checked_amount(application: Application) -> int:
        amount = to_minor_units(application.application_fees, application.service_charge)
        if amount < settings.payment_min_charge:
            minimum = Decimal(settings.payment_min_charge) / 100
            raise ValidationError(
                f"Payment amount must be at least {minimum:.2f} {settings.payment_currency.upper()}",
                field="amount",
                context={"amount": amount, "minimum": settings.payment_min_charge},
            )
        return amount

    @staticmethod
    def _metadata(application: Application) -> dict:
        return {
            METADATA_APPLICATION_ID: str(application.id),
            METADATA_USER_ID: str(application.user_id),
        }

    @staticmethod
    async def _product_name(db: AsyncSession, application: Application) -> str:
        scholarship = await db.get(Scholarship, application.scholarship_id)
        if scholarship is not None and scholarship.scholarship_name:
            return scholarship.scholarship_name
        return DEFAULT_PRODUCT_NAME

    @staticmethod
    async def _session_intent(
        provider: PaymentProvider, session: ProviderSession
    ) -> Optional[ProviderIntent]:
        if session.payment_intent is not None:
            return session.payment_intent
        if session.payment_intent_id:
            return await provider.retrieve_intent(session.payment_intent_id)
        return None

    @staticmethod
    def _ignored(event_id: str, detail: str) -> WebhookOutcome:
        logger.warning("Webhook event %s ignored: %s", event_id, detail)
        return WebhookOutcome(outcome=WebhookOutcome.IGNORED, detail=detail)


def _with_session_ref(intent: ProviderIntent, session: ProviderSession) -> ProviderIntent:
    """
    Intents created by sessions older than ``payment_intent_data`` carry no
    metadata of their own; fall back to the session's.
    """
    if intent.application_ref or not session.application_ref:
        return intent
    return replace(intent, metadata={**intent.metadata, METADATA_APPLICATION_ID: session.application_ref})


payment_reconciler = PaymentReconciler()
