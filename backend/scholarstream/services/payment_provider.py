"""
ScholarStream Backend - Abstract Payment Provider Interface
=============================================================

What:  The contract the payment reconciler needs from a card processor, and
       the provider-neutral value objects it returns.
How:   ``StripeService`` implements it against the Stripe API; the test suite
       substitutes an in-memory fake through the FastAPI dependency.

Value objects are plain frozen dataclasses, so the reconciler never touches
SDK objects and never needs to know which provider is behind them.

Metadata convention:
    Every intent (and hosted session) created by this service carries
    ``{"applicationId": <uuid>, "userId": <uuid>}``. Reconciliation compares
    ``applicationId`` against the application being paid.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

METADATA_APPLICATION_ID = "applicationId"
METADATA_USER_ID = "userId"

INTENT_SUCCEEDED = "succeeded"

EVENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class ProviderIntent:
    id: str
    status: str
    metadata: Dict[str, str] = field(default_factory=dict)
    amount: Optional[int] = None
    currency: Optional[str] = None
    client_secret: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == INTENT_SUCCEEDED

    @property
    def application_ref(self) -> Optional[str]:
        return self.metadata.get(METADATA_APPLICATION_ID)


@dataclass(frozen=True)
class ProviderSession:
    """
    A hosted checkout session.

    ``payment_intent`` is populated when the provider returned the expanded
    intent; otherwise only ``payment_intent_id`` is known (or neither, before
    the customer pays).
    """
    id: str
    url: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    payment_intent_id: Optional[str] = None
    payment_intent: Optional[ProviderIntent] = None

    @property
    def application_ref(self) -> Optional[str]:
        return self.metadata.get(METADATA_APPLICATION_ID)


@dataclass(frozen=True)
class ProviderEvent:
    """
    A verified webhook event.

    ``object_id`` is the id of the event's data object: an intent id for
    ``payment_intent.*`` events, a session id for ``checkout.session.*``.
    """
    id: str
    type: str
    object_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    """
    Contract:
        - Methods raise NotFoundError for references the provider does not know
        - Transport/provider failures raise PaymentProviderError (``retryable``
          tells webhook handling whether a redelivery might succeed)
        - CircuitBreakerOpenError when the provider has been failing
        - PaymentNotConfiguredError when credentials are missing
    """

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when API credentials are present."""

    @property
    @abstractmethod
    def webhook_configured(self) -> bool:
        """True when the webhook signing secret is present."""

    @abstractmethod
    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str]
    ) -> ProviderIntent:
        """Create an intent for ``amount`` minor units. Returns it with its client secret."""

    @abstractmethod
    async def retrieve_intent(self, intent_ref: str) -> ProviderIntent:
        """Fetch the current state of an intent."""

    @abstractmethod
    async def create_session(
        self,
        amount: int,
        currency: str,
        product_name: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> ProviderSession:
        """Create a hosted checkout session; the intent it creates carries ``metadata`` too."""

    @abstractmethod
    async def retrieve_session(self, session_ref: str) -> ProviderSession:
        """Fetch a session with its payment intent expanded."""

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        """
        Verify the signature over the raw request body and parse the event.

        Raises ValidationError on a bad signature or malformed payload.
        """
