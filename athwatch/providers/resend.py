"""Resend transactional email sender."""
import logging
from typing import Optional

import httpx

from athwatch.core.config import settings
from athwatch.providers import EmailSender, EmailSendError
from athwatch.providers.models import EmailMessage


logger = logging.getLogger(__name__)


class ResendEmailSender(EmailSender):
    """Submit messages through the Resend HTTP API.

    No retries happen here: a failed submission surfaces as ``EmailSendError``
    with a ``retryable`` classification for external retry tooling.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        from_address: Optional[str] = None,
        reply_to: Optional[str] = None,
        timeout: float = 15.0
    ):
        self.api_key = api_key or settings.resend_api_key
        self.base_url = (base_url or settings.resend_base_url).rstrip("/")
        self.from_address = from_address or settings.email_from
        self.reply_to = reply_to or settings.email_reply_to
        self.client = httpx.AsyncClient(timeout=timeout)

    async def send(self, message: EmailMessage) -> str:
        if not self.api_key:
            raise EmailSendError("Email service not configured (RESEND_API_KEY missing)", retryable=False)

        payload = {
            "from": self.from_address,
            "to": [message.to_address],
            "subject": message.subject,
            "html": message.body_html,
            "text": message.body_text,
            "tags": [{"name": k, "value": v} for k, v in message.metadata.items()],
        }
        if self.reply_to:
            payload["reply_to"] = self.reply_to

        try:
            response = await self.client.post(
                f"{self.base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"}
            )
        except httpx.TimeoutException as e:
            raise EmailSendError(f"Resend API timeout: {e}", retryable=True)
        except httpx.HTTPError as e:
            raise EmailSendError(f"Resend API connection error: {e}", retryable=True)

        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise EmailSendError(
                f"Resend API error {response.status_code}: {_error_detail(response)}",
                retryable=retryable,
                status_code=response.status_code
            )

        try:
            message_id = response.json().get("id")
        except (ValueError, AttributeError):
            message_id = None

        if not message_id:
            raise EmailSendError("Resend API response missing message id", retryable=False,
                                 status_code=response.status_code)

        logger.debug(f"Resend accepted message {message_id} for {message.to_address}")
        return message_id

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]
