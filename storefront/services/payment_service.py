import asyncio
import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Optional, Dict, Any, Tuple

import httpx

from ..core.config import Config
from ..enums import PaymentMethod, PaymentStatus
from ..exceptions import PaymentGatewayError
from ..schemas.payment import PaymobPaymentResult, TransactionVerification


logger = logging.getLogger(__name__)


# Paymob signs the transaction callback over these fields, concatenated in this order
HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)

WALLET_FAILURE_MESSAGES = {
    "NO_WALLET_FOUND": "This phone number does not have an active mobile wallet.",
    "INSUFFICIENT_FUNDS": "Your wallet balance is not enough to complete this payment.",
    "USER_REJECTED": "Payment was rejected from your wallet app.",
    "TIMEOUT": "You did not approve the payment in time.",
    "DECLINED": "Wallet payment was declined.",
}


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value())


def split_name(full_name: str) -> Tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "Customer", "Unknown"
    if len(parts) == 1:
        return parts[0], "Unknown"
    return parts[0], " ".join(parts[1:])


def clean_phone_number(phone: str) -> str:
    """Billing phone in local 01xxxxxxxxx form, falling back to a placeholder the gateway accepts"""
    digits = ''.join(filter(str.isdigit, phone or ''))
    if digits.startswith("20") and len(digits) > 10:
        digits = digits[2:]
    if digits.startswith("2") and len(digits) == 12:
        digits = digits[1:]
    if len(digits) == 10 and digits.startswith("1"):
        digits = "0" + digits
    if not digits.startswith("01") or len(digits) != 11:
        return "01000000000"
    return digits


def format_wallet_phone(phone: str) -> str:
    """Mobile wallets need exactly 11 digits starting with 01, without a country code"""
    digits = ''.join(filter(str.isdigit, phone or ''))
    if not digits:
        raise ValueError("Phone number is required")

    if digits.startswith("002") and len(digits) > 11:
        digits = digits[3:]
    elif digits.startswith("20") and len(digits) > 10:
        digits = digits[2:]

    if len(digits) == 10 and digits.startswith("1"):
        digits = "0" + digits

    if len(digits) != 11 or not digits.startswith("01"):
        raise ValueError("Invalid phone number. Must be 11 digits starting with 01.")
    return digits


def _lookup(data: Dict[str, Any], dotted_key: str) -> str:
    if dotted_key in data:
        value = data[dotted_key]
    else:
        value = data
        for part in dotted_key.split("."):
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(part)

    # flat query-string callbacks carry "order" rather than "order.id"
    if value is None and dotted_key == "order.id":
        value = data.get("order")
        if isinstance(value, dict):
            value = value.get("id")

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def failure_reason(data: Optional[Dict[str, Any]]) -> str:
    if not data:
        return "Payment failed. Please try again."
    code = (data.get("txn_response_code") or "").upper()
    return WALLET_FAILURE_MESSAGES.get(
        code,
        data.get("message") or "Payment failed. Please try another number or payment method.",
    )


class PaymobConfig:
    """Configuration class for Paymob settings"""
    def __init__(self):
        self.base_url = Config.PAYMOB_BASE_URL
        self.api_key = Config.PAYMOB_API_KEY
        self.integration_id_card = Config.PAYMOB_INTEGRATION_ID_CARD
        self.integration_id_wallet = Config.PAYMOB_INTEGRATION_ID_WALLET
        self.iframe_id_card = Config.PAYMOB_IFRAME_ID_CARD
        self.hmac_secret = Config.PAYMOB_HMAC_SECRET

        required = {
            "PAYMOB_API_KEY": self.api_key,
            "PAYMOB_INTEGRATION_ID_CARD": self.integration_id_card,
            "PAYMOB_INTEGRATION_ID_WALLET": self.integration_id_wallet,
            "PAYMOB_IFRAME_ID_CARD": self.iframe_id_card,
            "PAYMOB_HMAC_SECRET": self.hmac_secret,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise PaymentGatewayError(f"Missing required Paymob settings: {', '.join(missing)}")


class PaymentService:
    def __init__(
        self,
        config: Optional[PaymobConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff_seconds: float = 1.0,
    ):
        self._config = config
        self._transport = transport
        self.backoff_seconds = backoff_seconds

    @property
    def config(self) -> PaymobConfig:
        """Lazy load configuration"""
        if self._config is None:
            self._config = PaymobConfig()
        return self._config

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=Config.PAYMOB_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def _json(self, response: httpx.Response, path: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            logger.error("Paymob %s returned a non-JSON body: %s", path, response.text[:500])
            raise PaymentGatewayError(f"Payment gateway sent an unreadable reply on {path}") from e
        if not isinstance(data, dict):
            raise PaymentGatewayError(f"Payment gateway sent an unexpected reply on {path}")
        return data

    async def _post(self, client: httpx.AsyncClient, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise PaymentGatewayError(f"Payment gateway timed out on {path}") from e
        except httpx.RequestError as e:
            raise PaymentGatewayError(f"Network error calling payment gateway: {e}") from e

        if response.is_error:
            logger.error("Paymob %s failed: %s - %s", path, response.status_code, response.text[:500])
            raise PaymentGatewayError(f"Payment gateway rejected {path} with status {response.status_code}")
        return self._json(response, path)

    async def authenticate(self, client: httpx.AsyncClient) -> str:
        """Get an auth token, retrying with exponential back-off"""
        attempts = max(1, Config.PAYMOB_AUTH_RETRIES)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                data = await self._post(client, "auth/tokens", {"api_key": self.config.api_key})
                token = data.get("token")
                if not token:
                    raise PaymentGatewayError("Invalid auth token received")
                return token
            except PaymentGatewayError as e:
                last_error = e
                logger.warning("Paymob authentication attempt %s/%s failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))

        raise PaymentGatewayError("Paymob authentication failed after all retries") from last_error

    async def create_gateway_order(self, client: httpx.AsyncClient, token: str, order_number: str, amount) -> str:
        amount_cents = to_cents(amount)
        data = await self._post(client, "ecommerce/orders", {
            "auth_token": token,
            "delivery_needed": False,
            "amount_cents": amount_cents,
            "currency": Config.CURRENCY,
            "merchant_order_id": order_number,
            "items": [{"name": f"Order {order_number}", "amount_cents": amount_cents, "quantity": 1}],
        })
        if data.get("id") is None:
            raise PaymentGatewayError("Invalid order response from payment gateway")

        logger.info("Paymob order %s created for %s", data["id"], order_number)
        return str(data["id"])

    async def generate_payment_key(
        self,
        client: httpx.AsyncClient,
        token: str,
        gateway_order_id: str,
        amount,
        customer_name: str,
        customer_email: str,
        customer_phone: str,
        integration_id: str,
    ) -> str:
        first_name, last_name = split_name(customer_name)
        data = await self._post(client, "acceptance/payment_keys", {
            "auth_token": token,
            "amount_cents": to_cents(amount),
            "expiration": 3600,
            "order_id": gateway_order_id,
            "billing_data": {
                "email": customer_email,
                "phone_number": clean_phone_number(customer_phone),
                "first_name": first_name,
                "last_name": last_name,
                "street": "NA",
                "city": "NA",
                "country": "EG",
                "apartment": "NA",
                "floor": "NA",
                "building": "NA",
                "shipping_method": "PKG",
                "postal_code": "NA",
                "state": "NA",
            },
            "currency": Config.CURRENCY,
            "integration_id": int(integration_id),
            "lock_order_when_paid": True,
        })
        payment_key = data.get("token")
        if not payment_key:
            raise PaymentGatewayError("Invalid payment key received")
        return payment_key

    def iframe_url(self, payment_key: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/acceptance/iframes/{self.config.iframe_id_card}?payment_token={payment_key}"

    async def initiate_payment(
        self,
        order_number: str,
        amount,
        customer_name: str,
        customer_email: str,
        customer_phone: str,
        method: PaymentMethod,
    ) -> PaymobPaymentResult:
        """
        Opens a gateway payment session for an order.

        Card payments get an iframe URL. Wallet payments are charged straight to
        the guest's phone and get the wallet's redirect URL. Any failure on the
        way raises PaymentGatewayError.
        """
        if method == PaymentMethod.CASH_ON_DELIVERY:
            raise PaymentGatewayError("Cash on delivery orders do not use the payment gateway")

        integration_id = (
            self.config.integration_id_wallet if method == PaymentMethod.WALLET else self.config.integration_id_card
        )

        async with self._client() as client:
            token = await self.authenticate(client)
            gateway_order_id = await self.create_gateway_order(client, token, order_number, amount)
            payment_key = await self.generate_payment_key(
                client, token, gateway_order_id, amount,
                customer_name, customer_email, customer_phone, integration_id,
            )

        result = PaymobPaymentResult(success=True, provider_order_id=gateway_order_id, payment_key=payment_key)
        if method == PaymentMethod.CARD:
            result.iframe_url = self.iframe_url(payment_key)
        else:
            result.redirect_url = await self.execute_wallet_payment(payment_key, customer_phone)
        return result

    async def execute_wallet_payment(self, payment_key: str, wallet_phone: str) -> Optional[str]:
        try:
            phone = format_wallet_phone(wallet_phone)
        except ValueError as e:
            raise PaymentGatewayError(str(e)) from e

        async with self._client() as client:
            data = await self._post(client, "acceptance/payments/pay", {
                "source": {"identifier": phone, "subtype": "WALLET"},
                "payment_token": payment_key,
            })

        redirect_url = data.get("redirect_url") or data.get("iframe_redirection_url")
        if not redirect_url and not data.get("pending"):
            raise PaymentGatewayError(failure_reason(data.get("data")))
        return redirect_url

    async def verify_transaction(self, transaction_id: str) -> TransactionVerification:
        """Resolve a gateway transaction to succeeded, pending or failed"""
        async with self._client() as client:
            token = await self.authenticate(client)
            try:
                response = await client.get(
                    f"acceptance/transactions/{transaction_id}",
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.RequestError as e:
                raise PaymentGatewayError(f"Network error verifying transaction {transaction_id}") from e

        if response.is_error:
            logger.warning("Could not verify transaction %s: %s", transaction_id, response.status_code)
            raise PaymentGatewayError("Unable to verify payment.")

        data = self._json(response, f"acceptance/transactions/{transaction_id}")
        success = data.get("success") is True and not data.get("pending")
        pending = data.get("pending") is True

        if success:
            status = PaymentStatus.SUCCEEDED
        elif pending:
            status = PaymentStatus.PENDING
        else:
            status = PaymentStatus.FAILED

        order = data.get("order") or {}
        return TransactionVerification(
            transaction_id=str(transaction_id),
            status=status,
            merchant_order_id=order.get("merchant_order_id") if isinstance(order, dict) else None,
            amount_cents=data.get("amount_cents"),
            failure_reason=failure_reason(data.get("data")) if status == PaymentStatus.FAILED else None,
        )

    def verify_hmac(self, data: Dict[str, Any], received_hmac: Optional[str] = None) -> bool:
        """
        Checks the SHA-512 HMAC Paymob attaches to transaction callbacks.

        ``data`` is either the nested transaction object of a POST callback or the
        flat query parameters of the redirect callback; the signature comes from
        ``received_hmac`` or from an ``hmac`` key inside ``data``.
        """
        received = received_hmac or data.get("hmac")
        if not received:
            logger.warning("HMAC signature missing from callback")
            return False

        message = "".join(_lookup(data, key) for key in HMAC_FIELDS)
        calculated = hmac.new(
            self.config.hmac_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha512,
        ).hexdigest()

        valid = hmac.compare_digest(calculated, str(received).lower())
        if not valid:
            logger.warning("HMAC mismatch for transaction %s", _lookup(data, "id"))
        return valid
