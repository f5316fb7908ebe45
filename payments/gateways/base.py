"""
Base classes for payment gateway abstraction.

This module defines the interface that every payment gateway adapter must
implement, so the orchestrator can fail over between ZarinPal, Pay.ir and
NextPay without knowing any provider's wire format.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

import requests

logger = logging.getLogger(__name__)


# Adapter error taxonomy
NETWORK_ERROR = 'NETWORK_ERROR'
GATEWAY_ERROR = 'GATEWAY_ERROR'
PROTOCOL_ERROR = 'PROTOCOL_ERROR'

# Verification verdicts
VERDICT_CONFIRMED = 'confirmed'
VERDICT_AMOUNT_MISMATCH = 'amountMismatch'
VERDICT_REFERENCE_MISMATCH = 'referenceMismatch'
VERDICT_GATEWAY_REJECTED = 'gatewayRejected'
VERDICT_ALREADY_FINALIZED = 'alreadyFinalized'

# Units the providers accept amounts in
UNIT_RIAL = 'IRR'
UNIT_TOMAN = 'IRT'

DEFAULT_TIMEOUT = 10


@dataclass
class GatewayResponse:
    """
    Standardized response from payment gateway operations.

    Adapters never raise for provider or transport failures; they return this
    response with ``success=False`` and a normalized ``error_code``.

    Attributes:
        success: Whether the operation succeeded
        data: Normalized response data
        status_code: HTTP status code returned by the provider, if any
        error_message: Human-readable error message if operation failed
        error_code: NETWORK_ERROR, GATEWAY_ERROR or PROTOCOL_ERROR
        retryable: Whether the failure is transient
        timed_out: Whether the failure was the bounded timeout elapsing
        gateway_response: Raw provider response for debugging and logging
    """
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    timed_out: bool = False
    gateway_response: Optional[Dict[str, Any]] = None  # Raw gateway response for debugging


class GatewayException(Exception):
    """
    Custom exception for payment gateway errors.

    Raised for configuration and lookup problems and for callbacks that
    cannot be understood at all.
    """
    def __init__(self, message: str, error_code: Optional[str] = None, gateway_response: Optional[Dict] = None):
        self.message = message
        self.error_code = error_code
        self.gateway_response = gateway_response
        super().__init__(self.message)


class TransportFailure(Exception):
    """Raised by ``post_json`` when the provider could not be reached."""
    def __init__(self, message: str, timed_out: bool = False, status_code: Optional[int] = None):
        self.message = message
        self.timed_out = timed_out
        self.status_code = status_code
        super().__init__(message)


class ProtocolFailure(Exception):
    """Raised by ``post_json`` when the provider answered with something that is not JSON."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def to_native_amount(amount_irr: int, unit: str) -> int:
    """
    Convert a Rial amount into the unit a provider expects.

    Toman amounts are rounded up so the merchant is never undercharged.
    """
    amount_irr = int(amount_irr)
    if unit == UNIT_TOMAN:
        return (amount_irr + 9) // 10
    return amount_irr


def to_rial_amount(amount: int, unit: str) -> int:
    """Convert an amount reported in a provider's unit back into Rial."""
    amount = int(amount)
    if unit == UNIT_TOMAN:
        return amount * 10
    return amount


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateway implementations.

    Each provider implements the same three operations:
        - request_payment: obtain a redirect URL and a provider reference
        - verify_payment: confirm a reference against the locally stored amount
        - parse_callback: normalize the provider's redirect query string

    Instances hold only their own credentials and configuration.
    """

    gateway_id = ''
    default_unit = UNIT_RIAL

    def __init__(
        self,
        api_key: str,
        sandbox: bool = False,
        unit: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the payment gateway.

        Args:
            api_key: Merchant credential (merchant id / api key)
            sandbox: Use the provider's sandbox endpoints
            unit: Amount unit the provider expects ('IRR' or 'IRT')
            timeout: Seconds to wait for the provider before giving up
        """
        self.api_key = api_key
        self.sandbox = sandbox
        self.unit = (unit or self.default_unit).upper()
        self.timeout = timeout or DEFAULT_TIMEOUT

    def post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload and decode the JSON answer.

        Raises:
            TransportFailure: connection problems, timeouts and HTTP 5xx
            ProtocolFailure: a non-JSON or non-object body
        """
        try:
            resp = requests.post(
                url,
                json=payload,
                headers={'accept': 'application/json', 'content-type': 'application/json'},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransportFailure(f"Timed out after {self.timeout}s: {e!r}", timed_out=True)
        except requests.RequestException as e:
            raise TransportFailure(f"Request exception: {e!r}")

        if resp.status_code >= 500:
            raise TransportFailure(
                f"Provider unavailable (HTTP {resp.status_code})",
                status_code=resp.status_code
            )

        try:
            body = resp.json()
        except ValueError:
            raise ProtocolFailure(
                f"Non-JSON response (HTTP {resp.status_code})",
                status_code=resp.status_code
            )

        if not isinstance(body, dict):
            raise ProtocolFailure(
                f"Unexpected JSON document (HTTP {resp.status_code})",
                status_code=resp.status_code
            )
        return body

    def call_provider(self, operation: str, url: str, payload: Dict[str, Any]):
        """
        Run ``post_json`` and turn transport/protocol failures into responses.

        Returns a ``(body, None)`` pair on success and ``(None, GatewayResponse)``
        when the call failed before a usable body arrived.
        """
        try:
            return self.post_json(url, payload), None
        except TransportFailure as e:
            logger.warning(
                f"{self.gateway_id} {operation} transport failure",
                extra={'gateway': self.gateway_id, 'error': e.message, 'timed_out': e.timed_out}
            )
            return None, self.network_error(e.message, timed_out=e.timed_out, status_code=e.status_code)
        except ProtocolFailure as e:
            logger.error(
                f"{self.gateway_id} {operation} returned a malformed response",
                extra={'gateway': self.gateway_id, 'error': e.message}
            )
            return None, self.protocol_error(e.message, status_code=e.status_code)

    def native_amount(self, amount_irr: int) -> int:
        return to_native_amount(amount_irr, self.unit)

    def rial_amount(self, amount: int) -> int:
        return to_rial_amount(amount, self.unit)

    # Normalized failures

    def network_error(self, message: str, timed_out: bool = False, status_code: Optional[int] = None) -> GatewayResponse:
        return GatewayResponse(
            success=False,
            status_code=status_code,
            error_message=message,
            error_code=NETWORK_ERROR,
            retryable=True,
            timed_out=timed_out,
        )

    def gateway_error(self, message: str, raw: Optional[Dict] = None) -> GatewayResponse:
        return GatewayResponse(
            success=False,
            error_message=message,
            error_code=GATEWAY_ERROR,
            retryable=True,
            gateway_response=raw,
        )

    def protocol_error(self, message: str, raw: Optional[Dict] = None, status_code: Optional[int] = None) -> GatewayResponse:
        return GatewayResponse(
            success=False,
            status_code=status_code,
            error_message=message,
            error_code=PROTOCOL_ERROR,
            retryable=False,
            gateway_response=raw,
        )

    def verdict(
        self,
        verdict: str,
        raw: Dict[str, Any],
        provider_transaction_id: Optional[str] = None,
        reported_amount: Optional[int] = None
    ) -> GatewayResponse:
        return GatewayResponse(
            success=True,
            data={
                'verdict': verdict,
                'provider_transaction_id': provider_transaction_id,
                'reported_amount': reported_amount,
            },
            status_code=200,
            gateway_response=raw,
        )

    def compare_amount(self, reported_native: Optional[int], claimed_amount: int) -> str:
        """
        Compare a provider-reported amount against the stored Rial amount.

        A missing reported amount defers to the provider's own check.
        """
        if reported_native is None:
            return VERDICT_CONFIRMED
        if int(reported_native) != self.native_amount(claimed_amount):
            return VERDICT_AMOUNT_MISMATCH
        return VERDICT_CONFIRMED

    # Gateway operations

    @abstractmethod
    def request_payment(
        self,
        amount: int,
        order_id: str,
        description: str,
        callback_url: str
    ) -> GatewayResponse:
        """
        Ask the provider for a payment session.

        Args:
            amount: Amount in Rial
            order_id: External order identifier
            description: Human readable description shown by the provider
            callback_url: Where the provider sends the customer afterwards

        Returns:
            GatewayResponse with redirect_url and provider_reference in data
        """
        pass

    @abstractmethod
    def verify_payment(self, provider_reference: str, claimed_amount: int) -> GatewayResponse:
        """
        Verify a payment with the provider.

        Args:
            provider_reference: Reference issued by request_payment
            claimed_amount: Locally stored amount in Rial

        Returns:
            GatewayResponse with verdict, provider_transaction_id and
            reported_amount in data
        """
        pass

    @abstractmethod
    def parse_callback(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse the provider's callback parameters into a standardized format.

        Returns:
            Dictionary with keys:
                - provider_reference: str
                - order_id: str or None
                - succeeded: bool
                - claimed_amount: int in Rial, or None
        """
        pass
