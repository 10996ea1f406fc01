import asyncio

import pytest

from contenthub.services.dispatch import batch_succeeded, run_bounded


@pytest.mark.asyncio
async def test_bounded_dispatch_caps_concurrency_and_isolates_failures():
    in_flight = 0
    peak = 0

    async def worker(item):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        try:
            await asyncio.sleep(0.01)
            if item == 4:
                raise RuntimeError("item 4 broke")
            return item * 10
        finally:
            in_flight -= 1

    outcomes = await run_bounded(list(range(1, 8)), 3, worker)

    assert peak <= 3
    assert [o.item for o in outcomes] == [1, 2, 3, 4, 5, 6, 7]
    assert sum(1 for o in outcomes if o.ok) == 6
    failed = [o for o in outcomes if not o.ok]
    assert len(failed) == 1
    assert failed[0].item == 4
    assert str(failed[0].error) == "item 4 broke"
    assert outcomes[6].result == 70
    assert batch_succeeded(outcomes)


@pytest.mark.asyncio
async def test_all_failed_batch_is_not_a_success():
    async def worker(item):
        raise ValueError(item)

    outcomes = await run_bounded(["a", "b"], 2, worker)

    assert not batch_succeeded(outcomes)


@pytest.mark.asyncio
async def test_empty_batch():
    async def worker(item):
        return item

    outcomes = await run_bounded([], 3, worker)

    assert outcomes == []
    assert batch_succeeded(outcomes)


@pytest.mark.asyncio
async def test_cap_must_be_positive():
    async def worker(item):
        return item

    with pytest.raises(ValueError):
        await run_bounded([1], 0, worker)
