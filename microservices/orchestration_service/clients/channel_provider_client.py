"""
Channel Provider Client

Client for the channel provider gateway that transmits message batches and
reports delivery telemetry. Telemetry is reported by the gateway as running
totals; the client turns it into deltas since the previous fetch.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from core.config import ProviderConfig

from ..models import COUNT_FIELDS, ChannelExecution, ChannelMetricsDelta, ChannelType

logger = logging.getLogger(__name__)


class ChannelProviderClient:
    """Client for the channel provider gateway"""

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ProviderConfig()
        self.base_url = self.config.base_url
        self.timeout = self.config.timeout_seconds
        self._http_client = http_client
        self._last_totals: Dict[Tuple[ChannelType, str], Dict[str, int]] = {}

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._http_client

    async def send_via_channel(
        self,
        channel_type: ChannelType,
        execution: ChannelExecution,
    ) -> Dict[str, Any]:
        """
        Dispatch one channel execution to the gateway.

        Returns:
            Delivery handle containing campaign_id
        """
        audience = execution.audience
        request_data = {
            "execution_id": execution.execution_id,
            "name": execution.channel.name,
            "content": execution.channel.content,
            "audience": {
                "size": audience.size,
                "lists": audience.lists,
                "segments": audience.segments,
                "contact_ids": [c.contact_id for c in audience.contacts],
            },
        }

        try:
            response = await self._client().post(
                f"/api/v1/channels/{channel_type.value}/campaigns",
                json=request_data,
            )
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending {channel_type.value} batch: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error sending {channel_type.value} batch: {e}")
            raise

    async def fetch_channel_metrics(
        self,
        channel_type: ChannelType,
        provider_campaign_id: str,
    ) -> ChannelMetricsDelta:
        """Fetch running totals and return the change since the previous fetch"""
        try:
            response = await self._client().get(
                f"/api/v1/channels/{channel_type.value}/campaigns/{provider_campaign_id}/metrics"
            )
            response.raise_for_status()
            payload = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Error fetching {channel_type.value} metrics: {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error fetching {channel_type.value} metrics: {e}")
            raise

        totals = {name: int(payload.get(name) or 0) for name in COUNT_FIELDS}
        key = (channel_type, provider_campaign_id)
        previous = self._last_totals.get(key, {})
        self._last_totals[key] = totals

        return ChannelMetricsDelta(
            **{name: totals[name] - previous.get(name, 0) for name in COUNT_FIELDS},
            delivered_contact_ids=payload.get("delivered_contact_ids"),
        )

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
