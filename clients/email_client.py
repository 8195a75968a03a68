"""
Email gateway client for auth notifications.

Messages are rendered here (subject plus plain-text body) and handed to an
HTTP gateway that owns delivery. Each request is signed with HMAC-SHA256
over "<timestamp>.<body>" so the gateway can reject tampered or replayed
payloads.
"""

import hashlib
import hmac
import json
import logging
import time

import requests

logger = logging.getLogger(__name__)

SENDER = "auth"

OTP_SUBJECTS = {
    "email_verification": "Email Verification - Your OTP Code",
    "password_reset": "Password Reset - Your OTP Code",
}

OTP_INSTRUCTIONS = {
    "email_verification": "Please use the following code to verify your email address:",
    "password_reset": "Please use the following code to reset your password:",
}


class EmailGatewayError(Exception):
    """Raised when the gateway could not accept a message."""


def render_otp_message(code: str, purpose: str, expires_in_minutes: int | None) -> tuple[str, str]:
    """Subject and body for a one-time code.

    Raises:
        ValueError: Unknown purpose.
    """
    if purpose not in OTP_SUBJECTS:
        raise ValueError(f"Unknown OTP purpose: {purpose}")

    lines = [OTP_INSTRUCTIONS[purpose], "", f"    {code}", ""]
    if expires_in_minutes is not None:
        lines.append(f"This code expires in {expires_in_minutes} minutes.")
    lines.append("If you did not request this, you can ignore this email.")
    return OTP_SUBJECTS[purpose], "\n".join(lines)


def render_welcome_message(name: str | None, app_name: str) -> tuple[str, str]:
    body = (
        f"Hi {name or 'User'},\n\n"
        f"Your email is verified and your {app_name} account is ready to use."
    )
    return f"Welcome to {app_name}!", body


class EmailGatewayClient:
    """Signed JSON POSTs to the email gateway over a pooled requests.Session."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        """
        Args:
            gateway_url: Full URL of the gateway's send endpoint
            api_key: Value for the X-API-Key header
            hmac_secret: Key for the X-Signature HMAC
            timeout: Seconds before a gateway call is abandoned

        Raises:
            ValueError: If any credential is empty
        """
        for field, value in (
            ("gateway_url", gateway_url),
            ("api_key", api_key),
            ("hmac_secret", hmac_secret),
        ):
            if not value:
                raise ValueError(f"{field} is required")

        self.gateway_url = gateway_url
        self.timeout = timeout
        self._hmac_key = hmac_secret.encode("utf-8")
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json", "X-API-Key": api_key})

    def sign(self, timestamp: str, body: str) -> str:
        """Hex HMAC-SHA256 of '<timestamp>.<body>'."""
        message = f"{timestamp}.{body}".encode("utf-8")
        return hmac.new(self._hmac_key, message, hashlib.sha256).hexdigest()

    def _deliver(self, email: str, subject: str, body: str) -> None:
        """
        Raises:
            EmailGatewayError: Transport failure, non-JSON reply, or rejection.
        """
        payload = json.dumps(
            {"email": email, "subject": subject, "body": body, "sender": SENDER},
            separators=(",", ":"),
        )
        timestamp = str(int(time.time()))
        headers = {"X-Timestamp": timestamp, "X-Signature": self.sign(timestamp, payload)}

        try:
            response = self._session.post(
                self.gateway_url, data=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"Email gateway returned invalid JSON (status {response.status_code})")
            raise EmailGatewayError("Invalid response from gateway") from e

        if not response.ok or not result.get("success"):
            reason = result.get("message", "Unknown error")
            logger.error(f"Email gateway rejected message ({response.status_code}): {reason}")
            raise EmailGatewayError(f"Gateway error: {reason}")

    def send_otp(
        self, email: str, code: str, purpose: str, expires_in_minutes: int | None = None
    ) -> None:
        """
        Send a one-time code. The code itself is never logged.

        Args:
            purpose: OTP purpose value, "email_verification" or "password_reset"

        Raises:
            ValueError: Unknown purpose
            EmailGatewayError: On any delivery failure
        """
        subject, body = render_otp_message(code, purpose, expires_in_minutes)
        self._deliver(email, subject, body)
        logger.info(f"OTP email ({purpose}) sent to {email}")

    def send_welcome(self, email: str, name: str | None = None, app_name: str = "Auth") -> None:
        """Send the post-verification welcome notice.

        Raises:
            EmailGatewayError: On any delivery failure
        """
        subject, body = render_welcome_message(name, app_name)
        self._deliver(email, subject, body)
        logger.info(f"Welcome email sent to {email}")
