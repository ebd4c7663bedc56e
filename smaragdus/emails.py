# smaragdus/emails.py
"""Transactional email over the Resend HTTP API plus the message templates.

Sending never raises: every failure is logged and reported through
``EmailSendResult`` so callers can fire and forget.
"""
import html
import logging
from dataclasses import dataclass
from string import Template
from typing import Dict, List, Optional, Union

import httpx

from . import config

logger = logging.getLogger(__name__)

SITE_NAME = "Smaragdus Viridi"


@dataclass
class EmailSendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def format_from_address(address: str) -> str:
    # "noreply@smaragdusviridi.com" -> "Smaragdusviridi <noreply@smaragdusviridi.com>"
    parts = address.split("@")
    domain = parts[1].split(".")[0] if len(parts) > 1 else "Smaragdus"
    return f"{domain[:1].upper()}{domain[1:]} <{address}>"


class EmailClient:
    def __init__(self, api_key: str, from_address: str = config.EMAIL_FROM_ADDRESS,
                 api_url: str = config.RESEND_API_URL, timeout: float = 15):
        if not api_key:
            raise ValueError("Resend API key is required")
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self.timeout = timeout

    async def send(self, to: Union[str, List[str]], subject: str, html_body: str,
                   tags: Optional[Dict[str, str]] = None) -> EmailSendResult:
        recipients = [to] if isinstance(to, str) else list(to)
        payload = {
            "from": format_from_address(self.from_address),
            "to": recipients,
            "subject": subject,
            "html": html_body,
        }
        if tags:
            payload["tags"] = [{"name": k, "value": str(v)} for k, v in tags.items() if v]
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("email send failed to=%s subject=%r: %s", recipients, subject, e)
            return EmailSendResult(success=False, error=str(e) or "Failed to send email")

        if r.status_code >= 400:
            try:
                message = r.json().get("message")
            except ValueError:
                message = None
            logger.error("email rejected status=%s to=%s: %s", r.status_code, recipients, message or r.text)
            return EmailSendResult(success=False, error=message or "Failed to send email")

        try:
            message_id = r.json().get("id")
        except ValueError:
            message_id = None
        logger.info("email sent id=%s to=%s tags=%s", message_id, recipients, tags)
        return EmailSendResult(success=True, message_id=message_id)


def get_email_client() -> Optional[EmailClient]:
    """None when no Resend key is configured; notifications are then skipped."""
    if not config.RESEND_API_KEY:
        return None
    return EmailClient(config.RESEND_API_KEY)


# templates

_LAYOUT = Template("""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="text-align: center; margin-bottom: 30px;">
    <h1 style="color: $accent; margin-bottom: 10px;">$heading</h1>
    <p style="color: #6b7280; font-size: 16px;">$site_name</p>
  </div>
  <div style="background: #f8fafc; padding: 30px; border-radius: 8px; margin-bottom: 20px;">
$body
  </div>
  <div style="text-align: center; color: #6b7280; font-size: 14px;">
    <p>$footer</p>
  </div>
</div>
""")

_QUOTE = Template(
    '<div style="background: white; padding: 20px; border-radius: 6px; border-left: 4px solid $accent;">'
    '<p style="color: #1f2937; margin: 0; white-space: pre-wrap;">$text</p></div>'
)

_BUTTON = Template(
    '<div style="text-align: center; margin: 30px 0;"><a href="$url" style="background: $accent; '
    'color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px;">$label</a></div>'
)

TEMPLATES = {
    "en": {
        "new_user_message_to_admin": {
            "subject": "New Chat Message from $user_name - $site_name",
            "heading": "New Chat Message",
            "intro": "New message from $user_name $user_email_part",
            "button": "View Conversation",
            "footer": "This is an automated notification from $site_name.",
        },
        "admin_response_to_user": {
            "subject": "Response from $site_name Support",
            "heading": "Support Response",
            "intro": "Hello $user_name, $admin_name has responded to your message:",
            "button": "Reply in Chat",
            "footer": "Continue the conversation at $site_url",
        },
        "unattended_message_alert": {
            "subject": "Unanswered Chat Message - $wait_time - $site_name",
            "heading": "Unattended Message Alert",
            "intro": "A message from $user_name $user_email_part has been waiting for $wait_time without a response.",
            "button": "Respond Now",
            "footer": "This is an automated alert from $site_name.",
        },
        "order_status_update": {
            "subject": "Order $order_number is now $status_label - $site_name",
            "heading": "Order Update",
            "intro": "Hello $user_name, your order $order_number is now $status_label.",
            "button": "View Order",
            "footer": "Thank you for shopping with $site_name.",
        },
        "password_reset": {
            "subject": "Reset your $site_name password",
            "heading": "Password Reset",
            "intro": "Hello $user_name, an administrator requested a password reset for your account. The link is valid for $expires_minutes minutes.",
            "button": "Set a New Password",
            "footer": "If you did not expect this email you can ignore it.",
        },
        "contact_admin_notification": {
            "subject": "[$urgency_badge] New Contact Form: $subject - $site_name",
            "heading": "New Contact Form Submission",
            "intro": "$name &lt;$email&gt; sent a $inquiry_label inquiry (prefers $contact_method).",
            "button": "Reply to $name",
            "footer": "Received via the $site_name contact form.",
        },
        "contact_auto_response": {
            "subject": "Thank you for contacting $site_name",
            "heading": "Thank you, $name!",
            "intro": "We have received your message regarding \"$subject\" and will get back to you as soon as possible.",
            "button": "Visit $site_name",
            "footer": "This is an automated confirmation from $site_name.",
        },
    },
    "ru": {
        "new_user_message_to_admin": {
            "subject": "Новое сообщение в чате от $user_name - $site_name",
            "heading": "Новое сообщение в чате",
            "intro": "Новое сообщение от $user_name $user_email_part",
            "button": "Открыть диалог",
            "footer": "Это автоматическое уведомление от $site_name.",
        },
        "admin_response_to_user": {
            "subject": "Ответ от поддержки $site_name",
            "heading": "Ответ поддержки",
            "intro": "Здравствуйте, $user_name! $admin_name ответил на ваше сообщение:",
            "button": "Ответить в чате",
            "footer": "Продолжите диалог на $site_url",
        },
        "unattended_message_alert": {
            "subject": "Неотвеченное сообщение - $wait_time - $site_name",
            "heading": "Сообщение без ответа",
            "intro": "Сообщение от $user_name $user_email_part ожидает ответа уже $wait_time.",
            "button": "Ответить",
            "footer": "Это автоматическое уведомление от $site_name.",
        },
        "order_status_update": {
            "subject": "Заказ $order_number: $status_label - $site_name",
            "heading": "Статус заказа",
            "intro": "Здравствуйте, $user_name! Статус вашего заказа $order_number: $status_label.",
            "button": "Открыть заказ",
            "footer": "Спасибо за покупку в $site_name.",
        },
        "password_reset": {
            "subject": "Сброс пароля $site_name",
            "heading": "Сброс пароля",
            "intro": "Здравствуйте, $user_name! Администратор запросил сброс пароля. Ссылка действительна $expires_minutes минут.",
            "button": "Задать новый пароль",
            "footer": "Если вы не ожидали это письмо, просто проигнорируйте его.",
        },
        "contact_admin_notification": {
            "subject": "[$urgency_badge] Новая заявка: $subject - $site_name",
            "heading": "Новая заявка с сайта",
            "intro": "$name &lt;$email&gt; отправил(а) заявку: $inquiry_label (связь: $contact_method).",
            "button": "Ответить $name",
            "footer": "Получено через форму обратной связи $site_name.",
        },
        "contact_auto_response": {
            "subject": "Спасибо за обращение в $site_name",
            "heading": "Спасибо, $name!",
            "intro": "Мы получили ваше сообщение по теме \"$subject\" и свяжемся с вами в ближайшее время.",
            "button": "Перейти на $site_name",
            "footer": "Это автоматическое подтверждение от $site_name.",
        },
    },
}

ACCENTS = {
    "unattended_message_alert": "#dc2626",
    "admin_response_to_user": "#10b981",
}


def render(template_type: str, locale: str = "en", quote: Optional[str] = None,
           button_url: Optional[str] = None, **values) -> Dict[str, str]:
    """Render a template to ``{"subject", "html"}``; substituted values are escaped."""
    locale = locale if locale in TEMPLATES else "en"
    tpl = TEMPLATES[locale][template_type]
    accent = ACCENTS.get(template_type, "#2563eb")

    safe = {k: html.escape(str(v)) if v is not None else "" for k, v in values.items()}
    safe.setdefault("site_name", SITE_NAME)
    safe.setdefault("site_url", config.SITE_URL)
    if "user_email" in safe:
        safe.setdefault("user_email_part", f"({safe['user_email']})" if safe["user_email"] else "")
    subject_values = {k: str(v) if v is not None else "" for k, v in values.items()}
    subject_values.setdefault("site_name", SITE_NAME)
    subject_values.setdefault("user_email_part", "")

    subject = Template(tpl["subject"]).safe_substitute(subject_values)
    body = f'<p style="color: #4b5563;">{Template(tpl["intro"]).safe_substitute(safe)}</p>'
    if quote:
        body += _QUOTE.substitute(accent=accent, text=html.escape(quote))
    if button_url:
        label = Template(tpl["button"]).safe_substitute(safe)
        body += _BUTTON.substitute(url=html.escape(button_url, quote=True), accent=accent, label=label)

    page = _LAYOUT.substitute(
        accent=accent,
        heading=Template(tpl["heading"]).safe_substitute(safe),
        site_name=SITE_NAME,
        body=body,
        footer=Template(tpl["footer"]).safe_substitute(safe),
    )
    return {"subject": subject, "html": page}
