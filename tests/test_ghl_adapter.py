import json

import httpx
import pytest

from dealflow.adapters.ghl.opportunities import GHLOpportunityClient
from dealflow.engine.collaborators import WriteError

STAGE_IDS = {
    "new_lead": "ghl-s1",
    "contacted": "ghl-s2",
    "quote_sent": "ghl-s3",
    "negotiating": "ghl-s4",
}


def _client(handler):
    return GHLOpportunityClient(
        access_token="tok",
        location_id="loc-1",
        pipeline_id="pipe-1",
        stage_ids=STAGE_IDS,
        base_url="https://ghl.test",
        transport=httpx.MockTransport(handler),
    )


class Recorder:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status, body = self.responses.pop(0)
        return httpx.Response(status, json=body)

    def body(self, i):
        return json.loads(self.requests[i].content)


@pytest.mark.asyncio
async def test_move_to_active_stage_sends_stage_id():
    rec = Recorder([(200, {"opportunity": {"id": "o1"}})])
    await _client(rec).move_stage("o1", "quote_sent", "user-1")

    req = rec.requests[0]
    assert req.method == "PUT"
    assert req.url.path == "/opportunities/o1"
    assert req.headers["Authorization"] == "Bearer tok"
    assert req.headers["Version"] == "2021-07-28"
    assert rec.body(0) == {"pipelineId": "pipe-1", "status": "open", "pipelineStageId": "ghl-s3"}


@pytest.mark.asyncio
async def test_move_to_won_sets_status():
    rec = Recorder([(200, {})])
    await _client(rec).move_stage("o1", "won", None)
    assert rec.body(0) == {"pipelineId": "pipe-1", "status": "won"}


@pytest.mark.asyncio
async def test_unmapped_active_stage_is_rejected():
    client = GHLOpportunityClient(
        access_token="tok", location_id="loc-1", pipeline_id="pipe-1", stage_ids={},
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})),
    )
    with pytest.raises(WriteError):
        await client.move_stage("o1", "contacted", None)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 422, 500])
async def test_error_status_raises_write_error(status):
    rec = Recorder([(status, {"message": "nope"})])
    with pytest.raises(WriteError):
        await _client(rec).move_stage("o1", "contacted", None)


@pytest.mark.asyncio
async def test_transport_error_raises_write_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(WriteError):
        await _client(handler).move_stage("o1", "contacted", None)


@pytest.mark.asyncio
async def test_update_fields_writes_value_and_loss_note():
    rec = Recorder([
        (200, {}),
        (200, {"opportunity": {"id": "o1", "contactId": "c-9"}}),
        (201, {"note": {"id": "n1"}}),
    ])
    await _client(rec).update_fields("o1", {"actual_value": 0.0, "lost_reason": "Price", "lost_notes": "too high"})

    assert [r.method for r in rec.requests] == ["PUT", "GET", "POST"]
    assert rec.body(0) == {"monetaryValue": 0.0}
    assert rec.requests[2].url.path == "/contacts/c-9/notes"
    assert rec.body(2) == {"body": "Lost reason: Price\ntoo high"}


@pytest.mark.asyncio
async def test_update_fields_without_contact_fails():
    rec = Recorder([(200, {"opportunity": {"id": "o1"}})])
    with pytest.raises(WriteError):
        await _client(rec).update_fields("o1", {"lost_reason": "Timing"})


@pytest.mark.asyncio
async def test_create_upserts_contact_then_opportunity():
    rec = Recorder([
        (200, {"contact": {"id": "c-1"}}),
        (201, {"opportunity": {"id": "o-new"}}),
    ])
    new_id = await _client(rec).create_opportunity({
        "company_id": "co-1",
        "title": "Jane - Lead",
        "contact_name": "Jane",
        "stage": "new_lead",
        "estimated_value": 1500.0,
    })

    assert new_id == "o-new"
    assert rec.requests[0].url.path == "/contacts/upsert"
    body = rec.body(1)
    assert body["contactId"] == "c-1"
    assert body["pipelineStageId"] == "ghl-s1"
    assert body["monetaryValue"] == 1500.0
    assert body["name"] == "Jane - Lead"


@pytest.mark.asyncio
async def test_fetch_maps_status_and_stage_ids():
    rec = Recorder([(200, {"opportunities": [
        {"id": "a", "name": "Deck", "status": "open", "pipelineStageId": "ghl-s2", "monetaryValue": 900,
         "contact": {"name": "Jane"}},
        {"id": "b", "name": "Roof", "status": "won", "pipelineStageId": "ghl-s4", "monetaryValue": 4000},
        {"id": "c", "name": "Fence", "status": "abandoned", "pipelineStageId": "ghl-s1"},
        {"id": "d", "name": "Shed", "status": "open", "pipelineStageId": "unknown"},
        {"name": "no id"},
    ]})])
    opps = await _client(rec).fetch_opportunities("co-1")

    assert [(o.id, o.stage) for o in opps] == [
        ("a", "contacted"), ("b", "won"), ("c", "lost"), ("d", "new_lead"),
    ]
    assert opps[0].estimated_value == 900.0
    assert opps[0].contact_name == "Jane"
    assert opps[1].actual_value == 4000.0
    assert opps[1].estimated_value is None
    assert rec.requests[0].url.params["pipeline_id"] == "pipe-1"


def _page(start, count):
    return [
        {"id": f"opp-{n}", "name": f"Deal {n}", "status": "open", "pipelineStageId": "ghl-s1"}
        for n in range(start, start + count)
    ]


@pytest.mark.asyncio
async def test_fetch_follows_search_cursor_across_pages():
    rec = Recorder([
        (200, {"opportunities": _page(0, 100),
               "meta": {"total": 150, "startAfterId": "opp-99", "startAfter": 1700000000000}}),
        (200, {"opportunities": _page(100, 50), "meta": {"total": 150}}),
    ])
    opps = await _client(rec).fetch_opportunities("co-1")

    assert len(rec.requests) == 2
    assert len(opps) == 150
    assert opps[-1].id == "opp-149"
    second = rec.requests[1].url.params
    assert second["startAfterId"] == "opp-99"
    assert second["startAfter"] == "1700000000000"
    assert second["pipeline_id"] == "pipe-1"


@pytest.mark.asyncio
async def test_fetch_stops_on_repeated_cursor():
    meta = {"startAfterId": "opp-1", "startAfter": 5}
    rec = Recorder([
        (200, {"opportunities": _page(0, 2), "meta": meta}),
        (200, {"opportunities": _page(2, 2), "meta": meta}),
    ])
    opps = await _client(rec).fetch_opportunities("co-1")
    assert len(rec.requests) == 2
    assert len(opps) == 4
