"""
Component Tests for ChannelProviderClient

The provider gateway is replaced by an httpx.MockTransport.
"""

import json

import httpx
import pytest
import pytest_asyncio

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import ProviderConfig
from microservices.orchestration_service.clients import ChannelProviderClient
from tests.contracts.orchestration.data_contract import ChannelType


class MockGateway:
    """Serves sends and running-total telemetry"""

    def __init__(self):
        self.requests = []
        self.totals = {}
        self.fail_status = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"detail": "gateway error"})

        if request.method == "POST":
            body = json.loads(request.content)
            return httpx.Response(
                201, json={"campaign_id": f"cmp_{body['execution_id']}", "status": "queued"}
            )

        campaign_id = request.url.path.split("/")[-2]
        return httpx.Response(200, json=self.totals.get(campaign_id, {}))


@pytest.fixture
def gateway():
    return MockGateway()


@pytest_asyncio.fixture
async def client(gateway):
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(gateway.handler),
        base_url="http://gateway.test",
    )
    client = ChannelProviderClient(ProviderConfig(), http_client=http_client)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def execution(builder, factory):
    plan = await builder.build_plan(
        "parallel", factory.make_channels(ChannelType.SMS), factory.make_audience(size=3)
    )
    return plan.channels[0]


class TestSendViaChannel:

    @pytest.mark.asyncio
    async def test_posts_batch_and_returns_handle(self, client, gateway, execution):
        handle = await client.send_via_channel(ChannelType.SMS, execution)

        assert handle["campaign_id"] == f"cmp_{execution.execution_id}"
        request = gateway.requests[0]
        assert request.url.path == "/api/v1/channels/sms/campaigns"
        body = json.loads(request.content)
        assert body["audience"]["size"] == 3
        assert len(body["audience"]["contact_ids"]) == 3
        assert body["content"] == execution.channel.content

    @pytest.mark.asyncio
    async def test_gateway_error_raises(self, client, gateway, execution):
        gateway.fail_status = 503

        with pytest.raises(httpx.HTTPStatusError):
            await client.send_via_channel(ChannelType.SMS, execution)


class TestFetchChannelMetrics:

    @pytest.mark.asyncio
    async def test_running_totals_become_deltas(self, client, gateway):
        gateway.totals["cmp_1"] = {"sent": 10, "delivered": 8}
        first = await client.fetch_channel_metrics(ChannelType.EMAIL, "cmp_1")

        gateway.totals["cmp_1"] = {"sent": 15, "delivered": 14, "opened": 4}
        second = await client.fetch_channel_metrics(ChannelType.EMAIL, "cmp_1")

        assert (first.sent, first.delivered) == (10, 8)
        assert (second.sent, second.delivered, second.opened) == (5, 6, 4)
        assert gateway.requests[0].url.path == "/api/v1/channels/email/campaigns/cmp_1/metrics"

    @pytest.mark.asyncio
    async def test_campaigns_tracked_independently(self, client, gateway):
        gateway.totals["cmp_1"] = {"sent": 10}
        gateway.totals["cmp_2"] = {"sent": 4}

        await client.fetch_channel_metrics(ChannelType.SMS, "cmp_1")
        other = await client.fetch_channel_metrics(ChannelType.SMS, "cmp_2")

        assert other.sent == 4

    @pytest.mark.asyncio
    async def test_contact_ids_passed_through(self, client, gateway):
        gateway.totals["cmp_1"] = {"delivered": 2, "delivered_contact_ids": ["c1", "c2"]}

        delta = await client.fetch_channel_metrics(ChannelType.SMS, "cmp_1")

        assert delta.delivered_contact_ids == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_gateway_error_raises(self, client, gateway):
        gateway.fail_status = 500

        with pytest.raises(httpx.HTTPStatusError):
            await client.fetch_channel_metrics(ChannelType.SMS, "cmp_1")
