import httpx
import pytest

from contenthub.exceptions import UpstreamServiceError
from contenthub.inference.meta_client import MetaClient


def _client(handler):
    return MetaClient(
        base_url="https://graph.test/v22.0",
        token="tok",
        ad_account_id="123",
        page_id="p1",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_upload_image_returns_hash():
    def handler(request):
        if request.url.host == "img.test":
            return httpx.Response(200, content=b"\x89PNG")
        assert request.url.path == "/v22.0/act_123/adimages"
        assert request.url.params["access_token"] == "tok"
        return httpx.Response(200, json={"images": {"bytes": {"hash": "abc123"}}})

    assert await _client(handler).upload_image("https://img.test/ad.png") == "abc123"


@pytest.mark.asyncio
async def test_platform_error_message_is_kept():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Invalid parameter", "code": 100}})

    with pytest.raises(UpstreamServiceError) as exc_info:
        await _client(handler).create_campaign("Autumn", "OUTCOME_TRAFFIC")

    assert exc_info.value.message == "Invalid parameter"


@pytest.mark.asyncio
async def test_duplicate_ad_set_uses_copied_id():
    def handler(request):
        assert request.url.path == "/v22.0/tmpl-1/copies"
        return httpx.Response(200, json={"copied_adset_id": "as-9"})

    assert await _client(handler).duplicate_ad_set("tmpl-1", "mc-1", "Autumn") == "as-9"
