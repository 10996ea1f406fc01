import json

import httpx
import pytest

from contenthub.exceptions import GenerationTimeoutError, UpstreamServiceError
from contenthub.inference.generation_client import GenerationClient, TaskFailed, TaskSucceeded, TaskTimedOut


class FakeClock:
    def __init__(self, step=10.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += self.step


def _client(handler, clock=None):
    clock = clock or FakeClock()
    return GenerationClient(
        base_url="https://gen.test/api/v1",
        api_key="k",
        model="image-model",
        transport=httpx.MockTransport(handler),
        clock=clock,
        sleep=clock.sleep,
    )


def _created(request):
    body = json.loads(request.content)
    assert body["model"] == "image-model"
    assert body["input"]["image_input"] == ["https://src.test/a.png"]
    return httpx.Response(200, json={"code": 200, "data": {"taskId": "t1"}})


@pytest.mark.asyncio
async def test_generate_polls_until_success():
    polls = []

    def handler(request):
        if request.url.path.endswith("/jobs/createTask"):
            return _created(request)
        polls.append(request.url.params["taskId"])
        if len(polls) < 3:
            return httpx.Response(200, json={"data": {"state": "generating"}})
        return httpx.Response(200, json={"data": {
            "state": "success",
            "resultJson": json.dumps({"resultUrls": ["https://cdn.test/r.png"]}),
            "costTime": 4200,
        }})

    result = await _client(handler).generate("translate", ["https://src.test/a.png"], aspect_ratio="1:1")

    assert result == TaskSucceeded(urls=("https://cdn.test/r.png",), cost_time_ms=4200)
    assert polls == ["t1", "t1", "t1"]


@pytest.mark.asyncio
async def test_provider_failure_is_reported():
    def handler(request):
        if request.url.path.endswith("/jobs/createTask"):
            return _created(request)
        return httpx.Response(200, json={"data": {"state": "fail", "failMsg": "content policy"}})

    client = _client(handler)
    outcome = await client.await_result("t1", poll_interval=0, max_wait=60)
    assert outcome == TaskFailed("content policy")

    with pytest.raises(UpstreamServiceError) as exc_info:
        await client.generate("translate", ["https://src.test/a.png"])
    assert "content policy" in exc_info.value.message


@pytest.mark.asyncio
async def test_budget_exhaustion_times_out():
    def handler(request):
        if request.url.path.endswith("/jobs/createTask"):
            return _created(request)
        return httpx.Response(200, json={"data": {"state": "waiting"}})

    client = _client(handler, FakeClock(step=10.0))
    outcome = await client.await_result("t1", poll_interval=3, max_wait=30)
    assert isinstance(outcome, TaskTimedOut)
    assert outcome.elapsed >= 30

    with pytest.raises(GenerationTimeoutError) as exc_info:
        await client.generate("translate", ["https://src.test/a.png"], max_wait=30)
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_transient_poll_errors_keep_polling():
    polls = []

    def handler(request):
        polls.append(request.url.path)
        if len(polls) == 1:
            return httpx.Response(502, text="bad gateway")
        if len(polls) == 2:
            return httpx.Response(200, text="not json")
        return httpx.Response(200, json={"data": {
            "state": "success",
            "resultJson": {"resultUrls": ["https://cdn.test/ok.png"]},
        }})

    outcome = await _client(handler).await_result("t1", poll_interval=0, max_wait=60)

    assert isinstance(outcome, TaskSucceeded)
    assert outcome.urls == ("https://cdn.test/ok.png",)
    assert len(polls) == 3


@pytest.mark.asyncio
async def test_rejected_submission_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"code": 402, "msg": "insufficient credits"})

    with pytest.raises(UpstreamServiceError) as exc_info:
        await _client(handler).generate("translate", ["https://src.test/a.png"])

    assert "insufficient credits" in exc_info.value.message
    assert calls == ["/api/v1/jobs/createTask"]


@pytest.mark.asyncio
async def test_credits_balance():
    def handler(request):
        assert request.url.path == "/api/v1/chat/credit"
        return httpx.Response(200, json={"code": 200, "data": 312.5})

    assert await _client(handler).get_credits() == 312.5
