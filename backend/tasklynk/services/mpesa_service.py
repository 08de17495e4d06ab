"""
Safaricom Daraja client for Lipa Na M-Pesa Online (STK push).

Only three endpoints are used: the OAuth client-credentials token, the
push request and the push status query.
"""
import base64
import logging
import time
from dataclasses import dataclass

import requests

from tasklynk.config import settings
from tasklynk.errors import GatewayError
from tasklynk.utils.clock import utcnow

logger = logging.getLogger(__name__)

OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"


@dataclass
class PushResult:
    checkout_request_id: str
    merchant_request_id: str | None
    response_code: str
    response_description: str | None


@dataclass
class QueryResult:
    result_code: str | None  # None while the customer has not answered the prompt
    result_desc: str | None = None
    receipt_number: str | None = None


def receipt_from_metadata(metadata: dict | None) -> str | None:
    for item in (metadata or {}).get("Item", []) or []:
        if item.get("Name") == "MpesaReceiptNumber":
            return item.get("Value")
    return None


def parse_callback(payload: dict) -> tuple[str | None, QueryResult]:
    """Extract (checkout_request_id, result) from a Daraja STK callback body."""
    callback = (payload.get("Body") or {}).get("stkCallback") or {}
    code = callback.get("ResultCode")
    return callback.get("CheckoutRequestID"), QueryResult(
        result_code=str(code) if code is not None else None,
        result_desc=callback.get("ResultDesc"),
        receipt_number=receipt_from_metadata(callback.get("CallbackMetadata")),
    )


class MpesaClient:
    def __init__(self, base_url: str, consumer_key: str, consumer_secret: str, shortcode: str,
                 passkey: str, callback_url: str, account_reference: str, timeout: int = 30,
                 session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.account_reference = account_reference
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls) -> "MpesaClient":
        return cls(
            base_url=settings.mpesa_base_url,
            consumer_key=settings.mpesa_consumer_key,
            consumer_secret=settings.mpesa_consumer_secret,
            shortcode=settings.mpesa_shortcode,
            passkey=settings.mpesa_passkey,
            callback_url=settings.mpesa_callback_url,
            account_reference=settings.mpesa_account_reference,
            timeout=settings.mpesa_timeout_seconds,
        )

    def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at:
            return self._token
        if not self.consumer_key or not self.consumer_secret:
            raise GatewayError("M-Pesa credentials are not configured", code="GATEWAY_NOT_CONFIGURED")
        try:
            response = self.session.get(
                self.base_url + OAUTH_PATH,
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("M-Pesa token request failed: %s", exc)
            raise GatewayError("Could not reach M-Pesa") from exc
        if response.status_code != 200:
            logger.error("M-Pesa token request returned %s", response.status_code)
            raise GatewayError("Failed to authenticate with M-Pesa")
        data = response.json()
        self._token = data["access_token"]
        # Refresh a minute early
        self._token_expires_at = time.time() + int(data.get("expires_in", 3599)) - 60
        return self._token

    def password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def _post(self, path: str, payload: dict) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        try:
            return self.session.post(self.base_url + path, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("M-Pesa request to %s failed: %s", path, exc)
            raise GatewayError("Could not reach M-Pesa") from exc

    def stk_push(self, phone: str, amount: int, description: str) -> PushResult:
        timestamp = utcnow().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": self.account_reference,
            "TransactionDesc": description[:100],
        }
        logger.info("Sending STK push of KSh %s to %s", amount, phone)
        response = self._post(STK_PUSH_PATH, payload)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code != 200 or str(data.get("ResponseCode")) != "0":
            detail = data.get("errorMessage") or data.get("ResponseDescription") or "Unknown error"
            logger.error("STK push rejected: %s", detail)
            raise GatewayError(f"Failed to initiate M-Pesa payment: {detail}")
        return PushResult(
            checkout_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
            response_code=str(data["ResponseCode"]),
            response_description=data.get("ResponseDescription"),
        )

    def query(self, checkout_request_id: str) -> QueryResult:
        timestamp = utcnow().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        response = self._post(STK_QUERY_PATH, payload)
        try:
            data = response.json()
        except ValueError:
            raise GatewayError("Malformed response from M-Pesa")
        code = data.get("ResultCode")
        if code is None or code == "":
            # Daraja answers "transaction is being processed" with an errorCode and no ResultCode
            return QueryResult(result_code=None, result_desc=data.get("errorMessage"))
        return QueryResult(
            result_code=str(code),
            result_desc=data.get("ResultDesc"),
            receipt_number=receipt_from_metadata(data.get("CallbackMetadata")),
        )


mpesa_client = MpesaClient.from_settings()


def get_mpesa_client() -> MpesaClient:
    return mpesa_client
