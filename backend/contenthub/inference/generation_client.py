import asyncio
import json
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, Union

import httpx

from ..config import settings
from ..exceptions import GenerationTimeoutError, UpstreamServiceError
from ..logger import logger
from ..schemas import GenerationInput

SERVICE = "generation"


@dataclass(frozen=True)
class TaskSucceeded:
    urls: Tuple[str, ...]
    cost_time_ms: Optional[int] = None


@dataclass(frozen=True)
class TaskFailed:
    message: str


@dataclass(frozen=True)
class TaskTimedOut:
    task_id: str
    elapsed: float


TaskOutcome = Union[TaskSucceeded, TaskFailed, TaskTimedOut]


def _parse_result_urls(result_json) -> List[str]:
    if not result_json:
        return []
    data = json.loads(result_json) if isinstance(result_json, str) else result_json
    urls = data.get("resultUrls") if isinstance(data, dict) else None
    return [u for u in (urls or []) if isinstance(u, str) and u]


class GenerationClient:
    """
    Client for the asynchronous image generation API.

    A task is submitted once and then polled until it reaches a terminal
    state or the wall-clock budget runs out. Submission is never retried
    here; re-submitting is up to the caller.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        model: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or settings.GENERATION_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.GENERATION_API_KEY
        self.model = model or settings.GENERATION_MODEL
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
            timeout=self._timeout,
        )

    async def submit(
        self,
        prompt: str,
        image_urls: List[str],
        aspect_ratio: str = "2:3",
        resolution: str = "2K",
        seed: Optional[int] = None,
    ) -> str:
        task_input = GenerationInput(
            prompt=prompt,
            image_input=list(image_urls),
            aspect_ratio=aspect_ratio,
            resolution=resolution,
            seed=seed,
        )
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/jobs/createTask",
                    json={"model": self.model, "input": task_input.to_payload()},
                )
        except httpx.HTTPError as e:
            logger.error(f"Generation submit transport error: {e}")
            raise UpstreamServiceError(f"Generation createTask failed: {e}", SERVICE)

        if resp.status_code >= 400:
            raise UpstreamServiceError(
                f"Generation createTask failed ({resp.status_code}): {resp.text}", SERVICE
            )
        data = resp.json()
        if data.get("code") != 200:
            raise UpstreamServiceError(f"Generation createTask error: {data.get('msg')}", SERVICE)

        task_id = (data.get("data") or {}).get("taskId")
        if not task_id:
            raise UpstreamServiceError("Generation createTask returned no taskId", SERVICE)

        logger.info(
            f"Generation task submitted: {task_id}",
            extra={"task_id": task_id, "aspect_ratio": aspect_ratio, "resolution": resolution},
        )
        return task_id

    async def _poll_once(self, client: httpx.AsyncClient, task_id: str) -> Optional[TaskOutcome]:
        resp = await client.get("/jobs/recordInfo", params={"taskId": task_id})
        resp.raise_for_status()
        info = resp.json().get("data") or {}
        state = info.get("state")

        if state == "success":
            urls = _parse_result_urls(info.get("resultJson"))
            if not urls:
                return TaskFailed("Generation succeeded without result URLs")
            return TaskSucceeded(urls=tuple(urls), cost_time_ms=info.get("costTime"))
        if state == "fail":
            return TaskFailed(info.get("failMsg") or info.get("failCode") or "Unknown error")
        return None

    async def await_result(
        self,
        task_id: str,
        poll_interval: float = 3.0,
        max_wait: float = 280.0,
    ) -> TaskOutcome:
        """
        Poll `task_id` every `poll_interval` seconds for at most `max_wait`.

        Transport errors and malformed status replies are logged and polling
        continues; only the provider's own verdict or the budget ends the loop.
        """
        start = self._clock()
        async with self._client() as client:
            while self._clock() - start < max_wait:
                try:
                    outcome = await self._poll_once(client, task_id)
                except (httpx.HTTPError, ValueError) as e:
                    logger.warning(
                        f"Generation poll error for {task_id}: {e}",
                        extra={"task_id": task_id},
                    )
                    outcome = None

                if outcome is not None:
                    logger.info(
                        f"Generation task {task_id} finished: {type(outcome).__name__}",
                        extra={"task_id": task_id, "elapsed_s": round(self._clock() - start, 2)},
                    )
                    return outcome

                await self._sleep(poll_interval)

        elapsed = self._clock() - start
        logger.warning(
            f"Generation task {task_id} still running after {elapsed:.0f}s",
            extra={"task_id": task_id, "elapsed_s": round(elapsed, 2)},
        )
        return TaskTimedOut(task_id=task_id, elapsed=elapsed)

    async def generate(
        self,
        prompt: str,
        image_urls: List[str],
        aspect_ratio: str = "2:3",
        resolution: str = "2K",
        seed: Optional[int] = None,
        poll_interval: float = 3.0,
        max_wait: float = 280.0,
    ) -> TaskSucceeded:
        task_id = await self.submit(prompt, image_urls, aspect_ratio, resolution, seed)
        outcome = await self.await_result(task_id, poll_interval=poll_interval, max_wait=max_wait)
        if isinstance(outcome, TaskFailed):
            raise UpstreamServiceError(f"Generation task failed: {outcome.message}", SERVICE)
        if isinstance(outcome, TaskTimedOut):
            raise GenerationTimeoutError(outcome.task_id, outcome.elapsed)
        return outcome

    async def download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=60.0, follow_redirects=True) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            raise UpstreamServiceError(f"Failed to download generated image: {e}", SERVICE)

    async def get_credits(self) -> float:
        try:
            async with self._client() as client:
                resp = await client.get("/chat/credit")
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamServiceError(f"Generation credit check failed: {e}", SERVICE)
        balance = resp.json().get("data")
        return float(balance) if isinstance(balance, (int, float)) else 0.0
