import html
import smtplib
import uuid
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Literal, Protocol

from app.core.config import settings
from app.schemas.automation import CartItem

EmailDeliveryStatus = Literal["sent", "not_configured", "failed"]


@dataclass(frozen=True)
class EmailSendRequest:
    to: str
    subject: str
    html_body: str
    text_body: str
    sender_name: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EmailDeliveryResult:
    status: EmailDeliveryStatus
    provider: str
    message_id: str | None = None
    detail: str | None = None


class EmailProvider(Protocol):
    name: str

    def send(self, request: EmailSendRequest) -> EmailDeliveryResult:
        ...


class StubEmailProvider:
    name = "stub"

    def send(self, request: EmailSendRequest) -> EmailDeliveryResult:
        return EmailDeliveryResult(
            status="sent",
            provider=self.name,
            message_id=f"email-{uuid.uuid4().hex[:14]}",
        )


class SmtpEmailProvider:
    name = "smtp"

    def _configured(self) -> bool:
        return bool(settings.smtp_host and settings.smtp_sender_email)

    def _build_message(self, request: EmailSendRequest) -> EmailMessage:
        message = EmailMessage()
        sender_name = request.sender_name or settings.smtp_sender_name
        sender = settings.smtp_sender_email or ""
        message["Subject"] = request.subject
        message["From"] = f"{sender_name} <{sender}>" if sender_name else sender
        message["To"] = request.to
        if settings.smtp_reply_to_email:
            message["Reply-To"] = settings.smtp_reply_to_email
        message.set_content(request.text_body)
        message.add_alternative(request.html_body, subtype="html")
        return message

    def send(self, request: EmailSendRequest) -> EmailDeliveryResult:
        if not self._configured():
            return EmailDeliveryResult(
                status="not_configured",
                provider=self.name,
                detail="SMTP not configured",
            )

        message = self._build_message(request)
        try:
            if settings.smtp_use_ssl:
                with smtplib.SMTP_SSL(
                    settings.smtp_host,
                    settings.smtp_port,
                    timeout=settings.smtp_timeout_seconds,
                ) as server:
                    if settings.smtp_username:
                        server.login(settings.smtp_username, settings.smtp_password or "")
                    server.send_message(message)
            else:
                with smtplib.SMTP(
                    settings.smtp_host,
                    settings.smtp_port,
                    timeout=settings.smtp_timeout_seconds,
                ) as server:
                    if settings.smtp_use_starttls:
                        server.starttls()
                    if settings.smtp_username:
                        server.login(settings.smtp_username, settings.smtp_password or "")
                    server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            return EmailDeliveryResult(status="failed", provider=self.name, detail=str(exc))

        return EmailDeliveryResult(
            status="sent",
            provider=self.name,
            message_id=message.get("Message-ID"),
        )


_EMAIL_PROVIDERS: dict[str, EmailProvider] = {
    "stub": StubEmailProvider(),
    "smtp": SmtpEmailProvider(),
}


def get_email_provider(name: str | None = None) -> EmailProvider:
    normalized = (name or settings.email_provider_default or "").strip().lower()
    provider = _EMAIL_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_EMAIL_PROVIDERS))
        raise ValueError(f"Unknown email provider '{name or normalized}'. Available: {available}")
    return provider


def _format_money(value: float) -> str:
    return f"{value:,.2f}"


def build_abandoned_cart_email(
    *,
    store_name: str,
    customer_name: str | None,
    items: list[CartItem],
    subtotal: float,
    recovery_url: str,
) -> tuple[str, str, str]:
    """Return (subject, html, text) for a cart recovery reminder.

    At most three items are listed; the rest are summarised as a count.
    """
    greeting = f"Hi {customer_name}," if customer_name else "Hi there,"
    shown = items[:3]
    hidden_count = max(len(items) - len(shown), 0)

    text_lines = [
        greeting,
        "",
        f"You left some items in your cart at {store_name}.",
        "",
    ]
    for item in shown:
        label = item.name + (f" ({item.variant_title})" if item.variant_title else "")
        text_lines.append(f"- {label} x{item.quantity}: {_format_money(item.price * item.quantity)}")
    if hidden_count:
        text_lines.append(f"...and {hidden_count} more item(s)")
    text_lines.extend(
        [
            "",
            f"Subtotal: {_format_money(subtotal)}",
            f"Complete your order: {recovery_url}",
        ]
    )

    rows = "".join(
        "<tr>"
        f"<td>{html.escape(item.name)}"
        + (f"<br><small>{html.escape(item.variant_title)}</small>" if item.variant_title else "")
        + f"</td><td>x{item.quantity}</td>"
        f"<td>{_format_money(item.price * item.quantity)}</td>"
        "</tr>"
        for item in shown
    )
    more_row = f"<tr><td colspan=\"3\">...and {hidden_count} more item(s)</td></tr>" if hidden_count else ""
    html_body = (
        "<div style=\"font-family: -apple-system, BlinkMacSystemFont, sans-serif;\">"
        f"<p>{html.escape(greeting)}</p>"
        f"<p>You left some items in your cart at {html.escape(store_name)}.</p>"
        f"<table width=\"100%\">{rows}{more_row}</table>"
        f"<p><strong>Subtotal: {_format_money(subtotal)}</strong></p>"
        f"<p><a href=\"{html.escape(recovery_url, quote=True)}\">Complete your order</a></p>"
        "</div>"
    )
    subject = f"You left something behind at {store_name}"
    return subject, html_body, "\n".join(text_lines)


def build_generic_email(
    *,
    store_name: str,
    customer_name: str | None,
    subject: str | None,
    body: str | None,
) -> tuple[str, str, str]:
    resolved_subject = (subject or "").strip() or f"Message from {store_name}"
    greeting = f"Hi {customer_name}," if customer_name else "Hi there,"
    text_body = "\n".join([greeting, "", body or "", "", "Regards,", store_name])
    html_body = (
        "<div style=\"font-family: -apple-system, BlinkMacSystemFont, sans-serif;\">"
        f"<h2>{html.escape(resolved_subject)}</h2>"
        f"<p>{html.escape(greeting)}</p>"
        f"<p>{html.escape(body or '')}</p>"
        f"<p>Regards,<br>{html.escape(store_name)}</p>"
        "</div>"
    )
    return resolved_subject, html_body, text_body
