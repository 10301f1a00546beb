"""Tests for the model fallback controller."""

import pytest

from app.modules.generation.errors import (
    MalformedOutput,
    PersistenceFailure,
    ProviderError,
    ProviderExhausted,
    ProviderFatal,
    ProviderUnavailable,
)
from app.modules.generation.fallback import FallbackTrace
from tests.conftest import make_controller


def rate_limited(model: str) -> ProviderUnavailable:
    return ProviderUnavailable("429 RESOURCE_EXHAUSTED", model=model, status_code=429)


class TestGenerate:
    """Test suite for non-streaming generation with rotation."""

    @pytest.mark.asyncio
    async def test_rotates_past_rate_limited_candidates(self) -> None:
        """A and B are rate-limited, C answers; two rotations are reported."""
        controller, provider, sleep = make_controller(
            {
                "model-a": [rate_limited("model-a")],
                "model-b": [rate_limited("model-b")],
                "model-c": ["answer"],
            },
            rotation_delay=2.0,
        )

        result = await controller.generate("prompt")

        assert result.model == "model-c"
        assert result.text == "answer"
        assert result.rotations == 2
        assert provider.calls == ["model-a", "model-b", "model-c"]
        assert sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_error_does_not_rotate(self) -> None:
        """A non rate-limit failure aborts on the first candidate."""
        controller, provider, _ = make_controller(
            {
                "model-a": [ProviderError("invalid API key", model="model-a", status_code=401)],
                "model-b": ["never used"],
            }
        )

        with pytest.raises(ProviderFatal) as exc_info:
            await controller.generate("prompt")

        assert exc_info.value.model == "model-a"
        assert provider.calls == ["model-a"]

    @pytest.mark.asyncio
    async def test_exhausted_carries_last_error(self) -> None:
        """When every candidate is rate-limited the last error is kept."""
        last = rate_limited("model-b")
        controller, _, sleep = make_controller(
            {"model-a": [rate_limited("model-a")], "model-b": [last]},
            rotation_delay=1.5,
        )

        with pytest.raises(ProviderExhausted) as exc_info:
            await controller.generate("prompt")

        assert exc_info.value.last_error is last
        assert exc_info.value.attempted == ["model-a", "model-b"]
        # No pause after the final candidate
        assert sleep.delays == [1.5]


async def _collect(controller, trace: FallbackTrace) -> list[str]:
    return [chunk async for chunk in controller.stream("prompt", trace)]


class TestStream:
    """Test suite for streaming generation with rotation."""

    @pytest.mark.asyncio
    async def test_rotates_before_first_chunk(self) -> None:
        """A stream that fails before output rotates to the next model."""
        controller, provider, _ = make_controller(
            {
                "model-a": [rate_limited("model-a")],
                "model-b": [["{", '"a"', ": 1}"]],
            }
        )
        trace = FallbackTrace()

        chunks = await _collect(controller, trace)

        assert chunks == ["{", '"a"', ": 1}"]
        assert trace.model == "model-b"
        assert trace.rotations == 1
        assert trace.attempted == ["model-a", "model-b"]
        assert provider.calls == ["model-a", "model-b"]

    @pytest.mark.asyncio
    async def test_failure_after_first_chunk_is_fatal(self) -> None:
        """Once output started, even a rate limit is not rotated away."""
        controller, provider, _ = make_controller(
            {
                "model-a": [["{", rate_limited("model-a")]],
                "model-b": [["never used"]],
            }
        )

        with pytest.raises(ProviderFatal):
            await _collect(controller, FallbackTrace())

        assert provider.calls == ["model-a"]

    @pytest.mark.asyncio
    async def test_empty_stream_is_fatal(self) -> None:
        """A stream that ends without any chunk is a provider failure."""
        controller, _, _ = make_controller({"model-a": [[]], "model-b": [["x"]]})

        with pytest.raises(ProviderFatal):
            await _collect(controller, FallbackTrace())

    @pytest.mark.asyncio
    async def test_stream_exhausted(self) -> None:
        """Every candidate rate-limited before output raises exhausted."""
        controller, _, _ = make_controller(
            {"model-a": [rate_limited("model-a")], "model-b": [rate_limited("model-b")]}
        )

        with pytest.raises(ProviderExhausted):
            await _collect(controller, FallbackTrace())


class TestRunBatch:
    """Test suite for batch processing with the exhaustion circuit breaker."""

    @pytest.mark.asyncio
    async def test_exhaustion_stops_remaining_jobs(self) -> None:
        """After one exhausted job the rest are skipped, not attempted."""
        controller, _, sleep = make_controller({"model-a": ["unused"]})
        attempted: list[int] = []

        async def worker(job: int) -> str:
            attempted.append(job)
            if job == 2:
                raise ProviderExhausted(rate_limited("model-a"), ["model-a"])
            return f"done-{job}"

        report = await controller.run_batch([1, 2, 3, 4], worker, item_delay=7.0)

        assert attempted == [1, 2]
        assert [i.status for i in report.items] == [
            "ok",
            "all_models_rate_limited",
            "skipped",
            "skipped",
        ]
        assert report.items[0].value == "done-1"
        assert report.stopped_early is True
        assert sleep.delays == [7.0]

    @pytest.mark.asyncio
    async def test_other_failures_do_not_stop_batch(self) -> None:
        """Fatal, malformed and storage failures are per-item."""
        controller, _, sleep = make_controller({"model-a": ["unused"]})
        errors = {
            1: ProviderFatal(ValueError("bad request"), model="model-a"),
            2: MalformedOutput("not json"),
            3: PersistenceFailure("db down"),
        }

        async def worker(job: int) -> int:
            if job in errors:
                raise errors[job]
            return job

        report = await controller.run_batch([1, 2, 3, 4], worker, item_delay=0.5)

        assert [i.status for i in report.items] == ["failed", "failed", "failed", "ok"]
        assert report.stopped_early is False
        assert sleep.delays == [0.5, 0.5, 0.5]
