import base64
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..exceptions import UpstreamServiceError
from ..logger import logger

SERVICE = "meta"


class MetaClient:
    """
    Thin client for the ad platform's Graph API.

    Each call is one request and fails on its own; callers decide what a
    failure means for the ad or campaign being pushed.
    """

    def __init__(
        self,
        base_url: str = None,
        token: str = None,
        ad_account_id: str = None,
        page_id: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
    ):
        self.base_url = (base_url or settings.META_API_BASE_URL).rstrip("/")
        self.token = token if token is not None else settings.META_SYSTEM_USER_TOKEN
        self.ad_account_id = ad_account_id if ad_account_id is not None else settings.META_AD_ACCOUNT_ID
        self.page_id = page_id if page_id is not None else settings.META_PAGE_ID
        self._transport = transport
        self._timeout = timeout

    @property
    def _account_path(self) -> str:
        return f"/act_{self.ad_account_id}"

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        params = dict(kwargs.pop("params", None) or {})
        params["access_token"] = self.token
        try:
            async with httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=self._timeout) as client:
                resp = await client.request(method, path, params=params, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Meta request {method} {path} failed: {e}")
            raise UpstreamServiceError(f"Meta API request failed: {e}", SERVICE)

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            message = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
            raise UpstreamServiceError(message or f"Meta API error ({resp.status_code})", SERVICE)
        return data

    async def create_campaign(self, name: str, objective: str, status: str = "PAUSED") -> str:
        data = await self._request(
            "POST",
            f"{self._account_path}/campaigns",
            json={"name": name, "objective": objective, "status": status, "special_ad_categories": []},
        )
        return data["id"]

    async def create_ad_set(
        self,
        name: str,
        campaign_id: str,
        daily_budget: int,
        countries: List[str],
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        optimization_goal: str = "LINK_CLICKS",
        status: str = "PAUSED",
    ) -> str:
        body: Dict[str, Any] = {
            "name": name,
            "campaign_id": campaign_id,
            "daily_budget": daily_budget,
            "billing_event": "IMPRESSIONS",
            "optimization_goal": optimization_goal,
            "targeting": {"geo_locations": {"countries": countries}},
            "start_time": start_time or datetime.now(timezone.utc).isoformat(),
            "status": status,
        }
        if end_time:
            body["end_time"] = end_time
        data = await self._request("POST", f"{self._account_path}/adsets", json=body)
        return data["id"]

    async def duplicate_ad_set(self, template_adset_id: str, campaign_id: str, name: str) -> str:
        data = await self._request(
            "POST",
            f"/{template_adset_id}/copies",
            json={"campaign_id": campaign_id, "deep_copy": False, "status_option": "PAUSED", "rename_options": {"rename_suffix": f" {name}"}},
        )
        return data.get("copied_adset_id") or data["id"]

    async def upload_image(self, image_url: str) -> str:
        """Download an image and upload it as bytes; returns the platform image hash."""
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout, follow_redirects=True) as client:
                img = await client.get(image_url)
                img.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamServiceError(f"Failed to download image for Meta upload: {e}", SERVICE)

        data = await self._request(
            "POST",
            f"{self._account_path}/adimages",
            data={"bytes": base64.b64encode(img.content).decode("utf-8")},
        )
        images = data.get("images") or {}
        if not images:
            raise UpstreamServiceError("Meta image upload returned no hash", SERVICE)
        first = next(iter(images.values()))
        return first["hash"]

    async def create_creative(
        self,
        name: str,
        image_hash: str,
        primary_text: str,
        link_url: str,
        headline: Optional[str] = None,
        call_to_action: str = "LEARN_MORE",
    ) -> str:
        link_data: Dict[str, Any] = {
            "image_hash": image_hash,
            "message": primary_text,
            "link": link_url,
            "call_to_action": {"type": call_to_action},
        }
        if headline:
            link_data["name"] = headline
        data = await self._request(
            "POST",
            f"{self._account_path}/adcreatives",
            json={
                "name": name,
                "object_story_spec": {"page_id": self.page_id, "link_data": link_data},
                "degrees_of_freedom_spec": {
                    "creative_features_spec": {"standard_enhancements": {"enroll_status": "OPT_OUT"}},
                },
            },
        )
        return data["id"]

    async def create_ad(self, name: str, adset_id: str, creative_id: str, status: str = "PAUSED") -> str:
        data = await self._request(
            "POST",
            f"{self._account_path}/ads",
            json={"name": name, "adset_id": adset_id, "creative": {"creative_id": creative_id}, "status": status},
        )
        return data["id"]
