"""License notification e-mails through the Resend HTTP API."""

from __future__ import annotations

import asyncio
import os
from typing import Optional

import httpx
from pydantic import BaseModel

from ..core.config import LicenseSettings
from ..models.license import LicenseClaims
from ..utils.sanitize import sanitize_error

RETRYABLE_MARKERS = ("429", "500", "502", "503", "504", "timeout", "timed out")
FATAL_MARKERS = ("400", "401", "403", "404", "422")


class EmailMessage(BaseModel):
    to: str
    subject: str
    text: str


class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


def build_license_email(
    claims: LicenseClaims,
    license_id: str,
    settings: LicenseSettings,
) -> EmailMessage:
    """Purchaser notice for a freshly stamped script."""
    lines = [
        "Bonjour,",
        "",
        f"Votre script {claims.script_name} a été généré sous licence.",
        "",
        f"Licence : {license_id}",
        f"Expire le : {claims.expires_at.isoformat()}",
        "",
        "Le script cessera de fonctionner après cette date.",
        f"Pour prolonger votre accès, rendez-vous sur {settings.vendor_url}",
        "",
        settings.vendor_name,
    ]
    return EmailMessage(
        to=claims.client_email,
        subject=f"Votre licence {license_id} - {claims.script_name}",
        text="\n".join(lines),
    )


class ResendMailer:
    """Sends e-mails with retry on rate limits, server errors and timeouts.

    Built from the ``email`` config section. The API key is read from the
    environment at send time and never stored on the instance.
    """

    def __init__(self, email_config: dict, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = email_config
        self.api_url = email_config.get("api_url", "https://api.resend.com/emails")
        self.from_email = email_config.get("from_email", "")
        self.timeout = email_config.get("timeout_seconds", 30)
        self.max_attempts = email_config.get("retry_attempts", 3)
        self.retry_delay = email_config.get("retry_delay_seconds", 2)
        self._transport = transport

    def _get_api_key(self) -> Optional[str]:
        env_var = self.config.get("api_key_env", "RESEND_API_KEY")
        return os.environ.get(env_var)

    async def _send_once(self, message: EmailMessage, api_key: str) -> SendResult:
        body = {
            "from": self.from_email,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "content-type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
            message_id = data.get("id") if isinstance(data, dict) else None
            return SendResult(success=True, message_id=message_id)
        except httpx.HTTPStatusError as e:
            return SendResult(
                success=False,
                error=f"{e.response.status_code} | {e.response.text}",
            )
        except httpx.TimeoutException as e:
            return SendResult(success=False, error=f"timeout: {e}")
        except (httpx.HTTPError, ValueError) as e:
            return SendResult(success=False, error=str(e))

    async def send(self, message: EmailMessage) -> SendResult:
        """Send a message. Failures are reported in the result, never raised."""
        api_key = self._get_api_key()
        if not api_key:
            env_var = self.config.get("api_key_env", "RESEND_API_KEY")
            return SendResult(
                success=False,
                error=f"API key not found in environment variable: {env_var}",
            )

        result = SendResult(success=False, error="Max retries exceeded")
        for attempt in range(1, self.max_attempts + 1):
            result = await self._send_once(message, api_key)
            result.attempts = attempt
            if result.success:
                return result

            error_msg = result.error or ""
            is_retryable = any(m in error_msg for m in RETRYABLE_MARKERS) and not any(
                error_msg.startswith(m) for m in FATAL_MARKERS
            )
            if not is_retryable or attempt >= self.max_attempts:
                break

            await asyncio.sleep(self.retry_delay * min(attempt, 3))

        result.error = sanitize_error(result.error or "", secrets=(api_key,))
        return result
