"""Email message formatting utilities."""
import html
from datetime import datetime
from typing import Optional

from athwatch.core.config import settings
from athwatch.models import ATHEvent
from athwatch.providers.models import EmailMessage


def format_price(price: Optional[float]) -> str:
    """
    Format a USD price with precision scaled to its magnitude.

    Args:
        price: Price in USD

    Returns:
        Formatted string, e.g. ``$61,000.00`` or ``$0.00001234``
    """
    if not price or price != price:
        return "$0.00"
    if price >= 1000:
        return f"${price:,.2f}"
    if price >= 1:
        text = f"{price:,.4f}"
    else:
        text = f"{price:.8f}"
    # Keep at least two decimals, drop trailing zeros after that
    whole, _, frac = text.partition(".")
    frac = frac.rstrip("0").ljust(2, "0")
    return f"${whole}.{frac}"


def format_percentage(value: float) -> str:
    return f"+{value:.2f}%"


def format_ath_email(event: ATHEvent, to_address: str, app_url: Optional[str] = None) -> EmailMessage:
    """
    Render the ATH notification email for one recipient.

    Args:
        event: Detected ATH event
        to_address: Recipient email
        app_url: Base URL for the dashboard link (defaults to settings)

    Returns:
        EmailMessage ready for the sender
    """
    dashboard_url = f"{(app_url or settings.app_url).rstrip('/')}/dashboard"
    new_ath = format_price(event.new_ath)
    previous_ath = format_price(event.previous_ath)
    increase = format_percentage(event.percentage_increase)
    detected = _format_timestamp(event.detected_at)
    # Asset names come from the market data source
    safe_name = html.escape(event.name)
    safe_symbol = html.escape(event.symbol)

    subject = f"🚀 {event.name} ({event.symbol}) Hit New All-Time High!"

    body_html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #1f2937;">{safe_name} ({safe_symbol}) Reached {new_ath}</h2>
  <div style="background: #f3f4f6; padding: 16px; border-radius: 8px;">
    <p><strong>New ATH:</strong> {new_ath}</p>
    <p><strong>Previous ATH:</strong> {previous_ath}</p>
    <p><strong>Increase:</strong> {increase}</p>
    <p><strong>Time:</strong> {detected}</p>
  </div>
  <p style="margin-top: 24px;">
    <a href="{html.escape(dashboard_url, quote=True)}" style="background: #2563eb; color: #fff; padding: 12px 24px; border-radius: 6px; text-decoration: none;">View Dashboard</a>
  </p>
</div>
    """.strip()

    body_text = f"""
{subject}

New ATH: {new_ath}
Previous ATH: {previous_ath}
Increase: {increase}
Time: {detected}

View your dashboard: {dashboard_url}
    """.strip()

    return EmailMessage(
        to_address=to_address,
        subject=subject,
        body_html=body_html,
        body_text=body_text,
        metadata={"type": "ath-notification", "crypto": event.symbol.lower()}
    )


def _format_timestamp(value: datetime) -> str:
    return value.strftime('%Y-%m-%d %H:%M UTC')
