import base64

import httpx
import pytest


def _b64(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("utf-8").rstrip("=")


class DummyResponse:
    def __init__(self, payload, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        return self._payload


FULL_MESSAGE = {
    "id": "m1",
    "threadId": "t1",
    "labelIds": ["INBOX", "UNREAD"],
    "snippet": "Hello &amp; welcome",
    "payload": {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "Subject", "value": "Hi"},
            {"name": "From", "value": "Alice <a@example.com>"},
            {"name": "To", "value": "u@example.com"},
            {"name": "Date", "value": "Fri"},
            {
                "name": "Authentication-Results",
                "value": "mx.google.com; dkim=pass header.i=@example.com; spf=softfail smtp.mailfrom=x; dmarc=fail",
            },
        ],
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": _b64("Hello world")}},
                    {"mimeType": "text/html", "body": {"data": _b64("<p>Hello <b>world</b></p>")}},
                ],
            },
            {
                "mimeType": "application/vnd.ms-word.document.macroEnabled.12",
                "filename": "invoice.docm",
                "body": {"attachmentId": "att-1", "size": 2048},
            },
        ],
    },
}


class DummyAsyncClient:
    calls = []
    responses = {}

    def __init__(self, *_, **__):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def get(self, url, params=None, headers=None):
        DummyAsyncClient.calls.append((url, params, headers))
        if url.endswith("/messages"):
            return DummyAsyncClient.responses.get("list", DummyResponse({"messages": [{"id": "m1"}]}))
        return DummyAsyncClient.responses.get("detail", DummyResponse(FULL_MESSAGE))


@pytest.fixture
def gmail_service(app, monkeypatch):
    import backend.app.services.gmail_service as gmail_service

    DummyAsyncClient.calls = []
    DummyAsyncClient.responses = {}
    monkeypatch.setattr(gmail_service.httpx, "AsyncClient", DummyAsyncClient)
    return gmail_service


@pytest.mark.anyio
async def test_list_messages_requests_inbox_with_limit(gmail_service):
    data = await gmail_service.list_messages("access-token", 7)
    assert data["messages"] == [{"id": "m1"}]
    url, params, headers = DummyAsyncClient.calls[0]
    assert url == "https://gmail.googleapis.com/gmail/v1/users/me/messages"
    assert params == {"maxResults": 7, "labelIds": "INBOX"}
    assert headers == {"Authorization": "Bearer access-token"}


@pytest.mark.anyio
async def test_get_message_detail_parses_full_payload(gmail_service):
    detail = await gmail_service.get_message_detail("access-token", "m1")
    _, params, _ = DummyAsyncClient.calls[0]
    assert params == {"format": "full"}
    assert detail["subject"] == "Hi"
    assert detail["from"] == "Alice <a@example.com>"
    assert detail["body"] == "Hello world"
    assert detail["snippet"] == "Hello & welcome"
    assert detail["labelIds"] == ["INBOX", "UNREAD"]
    assert detail["attachments"] == [
        {"filename": "invoice.docm", "mimeType": "application/vnd.ms-word.document.macroEnabled.12", "size": 2048}
    ]
    assert detail["authResults"] == {"spf": "softfail", "dkim": "pass", "dmarc": "fail"}


@pytest.mark.anyio
async def test_error_status_raises_typed_error(gmail_service):
    DummyAsyncClient.responses["list"] = DummyResponse({}, status_code=403, text="insufficientPermissions")
    with pytest.raises(gmail_service.GmailApiError) as excinfo:
        await gmail_service.list_messages("access-token", 10)
    assert excinfo.value.status_code == 403
    assert excinfo.value.kind is gmail_service.ProviderErrorKind.FORBIDDEN
    assert "insufficientPermissions" in str(excinfo.value)


@pytest.mark.anyio
async def test_transport_error_raises_untyped_gmail_error(gmail_service, monkeypatch):
    async def broken_get(self, url, params=None, headers=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(DummyAsyncClient, "get", broken_get)
    with pytest.raises(gmail_service.GmailApiError) as excinfo:
        await gmail_service.get_message_detail("access-token", "m1")
    assert excinfo.value.status_code is None
    assert excinfo.value.kind is gmail_service.ProviderErrorKind.UNKNOWN


def test_html_only_body_is_stripped_and_keeps_link_targets(gmail_service):
    payload = {
        "mimeType": "text/html",
        "body": {
            "data": _b64(
                '<style>p {color: red}</style><p>Reset <a href="http://203.0.113.9/login">here</a>&nbsp;now</p>'
            )
        },
    }
    text = gmail_service.clean_html(gmail_service.extract_body(payload))
    assert text == "Reset http://203.0.113.9/login here now"


@pytest.mark.parametrize(
    "message, kind",
    [
        ("Request failed with status code 401", "unauthorized"),
        ("status 403 forbidden", "forbidden"),
        ("429 Too Many Requests", "rate_limited"),
        ("400 Bad Request", "bad_request"),
        ("HTTP 500", "server_error"),
        ("HTTP 503 upstream", "server_error"),
        ("401 and then 403", "unauthorized"),
        ("retried 25 times", "unknown"),
        ("socket closed", "unknown"),
    ],
)
def test_message_classification_priority(gmail_service, message, kind):
    assert gmail_service.classify_error(RuntimeError(message)).value == kind


def test_typed_status_overrides_message_text(gmail_service):
    exc = gmail_service.GmailApiError("mentions 401 in text", status_code=429)
    assert gmail_service.classify_error(exc) is gmail_service.ProviderErrorKind.RATE_LIMITED


def test_inline_binary_parts_are_not_body_text(gmail_service):
    payload = {
        "mimeType": "multipart/related",
        "parts": [
            {"mimeType": "text/plain", "body": {"data": _b64("See the chart below")}},
            {"mimeType": "image/png", "body": {"data": _b64("\x89PNG binary noise")}},
        ],
    }
    assert gmail_service.extract_body(payload) == "See the chart below"
    assert gmail_service.extract_body({"mimeType": "image/png", "body": {"data": _b64("noise")}}) == ""
