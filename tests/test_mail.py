from __future__ import annotations

import json

import httpx

from whisperbox.mail import (
    RESEND_API_URL,
    LoggingEmailSender,
    ResendEmailSender,
    build_email_sender,
    render_verification_email,
)


def test_resend_sender_posts_code_to_recipient():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    sender = ResendEmailSender("re_test", "onboarding@resend.dev", client=client)

    result = sender.send("a@x.com", "alice", "123456")

    assert result.success
    request = captured[0]
    assert str(request.url) == RESEND_API_URL
    assert request.headers["Authorization"] == "Bearer re_test"
    body = json.loads(request.content)
    assert body["to"] == ["a@x.com"]
    assert body["from"] == "onboarding@resend.dev"
    assert "123456" in body["text"] and "123456" in body["html"]


def test_resend_sender_reports_http_errors():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(422)))
    result = ResendEmailSender("re_test", "from@x.com", client=client).send("a@x.com", "alice", "123456")

    assert not result.success
    assert result.message == "Failed to send verification email"


def test_resend_sender_reports_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    result = ResendEmailSender("re_test", "from@x.com", client=client).send("a@x.com", "alice", "123456")

    assert not result.success


def test_rendered_email_escapes_username():
    _, body = render_verification_email("<b>alice</b>", "654321")
    assert "&lt;b&gt;alice&lt;/b&gt;" in body
    assert "654321" in body


def test_build_email_sender_without_api_key_uses_outbox():
    sender = build_email_sender("", "from@x.com")
    assert isinstance(sender, LoggingEmailSender)
    assert sender.send("a@x.com", "alice", "123456").success
    assert list(sender.outbox) == [("a@x.com", "alice", "123456")]


def test_logging_sender_keeps_only_recent_deliveries():
    sender = LoggingEmailSender(keep=2)

    for index in range(5):
        sender.send(f"user{index}@x.com", f"user{index}", f"10000{index}")

    assert list(sender.outbox) == [
        ("user3@x.com", "user3", "100003"),
        ("user4@x.com", "user4", "100004"),
    ]
