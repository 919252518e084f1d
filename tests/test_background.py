import pytest

from services.dessert import background


@pytest.mark.asyncio
async def test_job_repeats_and_survives_errors():
    calls = []

    async def job():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("transient")
        if len(calls) == 3:
            background._shutdown_event.set()
        return len(calls)

    try:
        await background.run_periodically("test job", job, 0.01)
    finally:
        background._shutdown_event.clear()

    assert len(calls) == 3
