import pytest


@pytest.fixture
def inbox(app, monkeypatch):
    import backend.app.services.inbox as inbox

    async def fake_list(access_token, max_results):
        return {"messages": [{"id": "m1"}, {"threadId": "no-id"}, {"id": "m2"}, {"id": "m3"}][:max_results]}

    async def fake_detail(access_token, message_id):
        if message_id == "m2":
            raise RuntimeError("503 backend error")
        return {"id": message_id, "subject": f"Subject {message_id}", "body": "hello"}

    monkeypatch.setattr(inbox, "list_messages", fake_list)
    monkeypatch.setattr(inbox, "get_message_detail", fake_detail)
    monkeypatch.setattr(inbox, "analyze_email", lambda detail: {"id": detail["id"], "trustScore": 90})
    return inbox


@pytest.mark.anyio
async def test_scan_records_per_message_outcomes(inbox):
    scan = await inbox.scan_inbox("token", 10)
    assert scan.listed == 3
    assert [outcome.message_id for outcome in scan.outcomes] == ["m1", "m2", "m3"]
    assert [outcome.position for outcome in scan.outcomes] == [0, 1, 2]
    assert scan.emails == [{"id": "m1", "trustScore": 90}, {"id": "m3", "trustScore": 90}]
    [failure] = scan.failures
    assert failure.message_id == "m2"
    assert failure.ok is False
    assert failure.error == "503 backend error"


@pytest.mark.anyio
async def test_listing_errors_propagate(inbox, monkeypatch):
    async def failing_list(access_token, max_results):
        raise RuntimeError("429 rate limited")

    monkeypatch.setattr(inbox, "list_messages", failing_list)
    with pytest.raises(RuntimeError):
        await inbox.scan_inbox("token", 10)


@pytest.mark.anyio
async def test_empty_listing_yields_empty_scan(inbox):
    scan = await inbox.scan_inbox("token", 0)
    assert scan.listed == 0
    assert scan.emails == []
    assert scan.failures == []
