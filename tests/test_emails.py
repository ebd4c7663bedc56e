import json

import httpx
import pytest

from smaragdus import config, emails
from smaragdus.emails import EmailClient, format_from_address, render


class Calls(list):
    pass


@pytest.fixture
def resend(monkeypatch):
    """Route the client's HTTP calls to a handler; returns the list of captured requests."""
    calls = Calls()
    state = {"handler": lambda request: httpx.Response(200, json={"id": "re_123"})}
    real_client = httpx.AsyncClient

    def handler(request):
        calls.append(request)
        return state["handler"](request)

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    calls.state = state
    return calls


def test_format_from_address():
    assert format_from_address("noreply@smaragdusviridi.com") == "Smaragdusviridi <noreply@smaragdusviridi.com>"
    assert format_from_address("local") == "Smaragdus <local>"


def test_render_escapes_values():
    out = render("new_user_message_to_admin", "en", quote="<script>alert(1)</script>",
                 button_url="https://example.com/?a=1&b=2",
                 user_name="<b>Eve</b>", user_email="eve@example.com")
    assert out["subject"] == "New Chat Message from <b>Eve</b> - Smaragdus Viridi"
    assert "&lt;b&gt;Eve&lt;/b&gt; (eve@example.com)" in out["html"]
    assert "<script>" not in out["html"]
    assert "&lt;script&gt;" in out["html"]
    assert 'href="https://example.com/?a=1&amp;b=2"' in out["html"]


def test_render_locales():
    ru = render("order_status_update", "ru", user_name="Анна", order_number="SV-1", status_label="отправлен")
    assert ru["subject"] == "Заказ SV-1: отправлен - Smaragdus Viridi"
    fallback = render("order_status_update", "de", user_name="Anna", order_number="SV-1", status_label="shipped")
    assert fallback["subject"].startswith("Order SV-1")


def test_render_without_email_part():
    out = render("unattended_message_alert", "en", user_name="Guest", user_email=None, wait_time="45 minutes")
    assert "A message from Guest  has been waiting" in out["html"]
    assert out["subject"] == "Unanswered Chat Message - 45 minutes - Smaragdus Viridi"


def test_client_requires_key():
    with pytest.raises(ValueError):
        EmailClient("")


def test_get_email_client_disabled_without_key(monkeypatch):
    monkeypatch.setattr(config, "RESEND_API_KEY", None)
    assert emails.get_email_client() is None
    monkeypatch.setattr(config, "RESEND_API_KEY", "re_key")
    assert isinstance(emails.get_email_client(), EmailClient)


async def test_send_posts_to_resend(resend):
    client = EmailClient("re_key", from_address="noreply@smaragdusviridi.com", api_url="https://resend.test/emails")
    result = await client.send("a@example.com", "Hi", "<p>Hi</p>", tags={"notification_type": "test", "user_id": None})
    assert result.success is True
    assert result.message_id == "re_123"

    request = resend[0]
    assert request.headers["authorization"] == "Bearer re_key"
    body = json.loads(request.content)
    assert body["from"] == "Smaragdusviridi <noreply@smaragdusviridi.com>"
    assert body["to"] == ["a@example.com"]
    assert body["tags"] == [{"name": "notification_type", "value": "test"}]


async def test_send_reports_api_errors(resend):
    resend.state["handler"] = lambda request: httpx.Response(422, json={"message": "Invalid `to` field"})
    result = await EmailClient("re_key").send(["bad"], "Hi", "<p>Hi</p>")
    assert result.success is False
    assert result.error == "Invalid `to` field"


async def test_send_never_raises_on_network_errors(resend):
    def boom(request):
        raise httpx.ConnectError("connection refused")
    resend.state["handler"] = boom
    result = await EmailClient("re_key").send("a@example.com", "Hi", "<p>Hi</p>")
    assert result.success is False
    assert "connection refused" in result.error
