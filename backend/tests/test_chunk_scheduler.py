"""Tests for chunk dispatch and finding merge."""

import asyncio

import pytest

from app.services.chunk_scheduler import (
    ChunkScheduler,
    merge_findings,
    normalize_title,
    split_into_chunks,
)
from app.services.errors import ProviderError


class Recorder:
    """Chunk call that records concurrency and the windows it was part of."""

    def __init__(self, fail_on=None):
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.fail_on = fail_on or set()

    async def __call__(self, prompt: str) -> list[dict]:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if prompt in self.fail_on:
                raise ProviderError("forbidden", status_code=403)
            return [{"title": f"finding for {prompt}", "evidence": {"count": 1}}]
        finally:
            self.in_flight -= 1


def _prompt(chunk):
    return f"chunk-{chunk[0]}"


class TestSplit:
    def test_ceil_division(self):
        chunks = split_into_chunks(list(range(999)), 50)
        assert len(chunks) == 20
        assert len(chunks[-1]) == 49

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            split_into_chunks([1], 0)


class TestChunkScheduler:
    @pytest.mark.asyncio
    async def test_small_input_is_single_call(self):
        call = Recorder()
        scheduler = ChunkScheduler(call, chunk_size=50, max_parallel_chunks=3)
        findings = await scheduler.run(list(range(50)), _prompt)
        assert call.calls == 1
        assert len(findings) == 1

    @pytest.mark.asyncio
    async def test_windows_never_exceed_parallel_limit(self):
        call = Recorder()
        done = []

        async def on_chunk_done(index, total, found):
            done.append((index, total))

        scheduler = ChunkScheduler(call, 50, 3, on_chunk_done=on_chunk_done)
        findings = await scheduler.run(list(range(999)), _prompt)

        assert call.calls == 20
        assert call.max_in_flight == 3
        assert len(findings) == 20
        assert sorted(done) == [(i, 20) for i in range(1, 21)]

    @pytest.mark.asyncio
    async def test_failure_stops_later_windows(self):
        # chunk starting at record 50 is the second chunk of the first window
        call = Recorder(fail_on={"chunk-50"})
        scheduler = ChunkScheduler(call, 50, 3)
        with pytest.raises(ProviderError):
            await scheduler.run(list(range(999)), _prompt)
        # the failing window settles, nothing after it is dispatched
        assert call.calls == 3

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            ChunkScheduler(Recorder(), 0, 3)
        with pytest.raises(ValueError):
            ChunkScheduler(Recorder(), 50, 0)


class TestMergeFindings:
    def test_same_title_from_two_chunks_is_merged(self):
        merged = merge_findings(
            [
                {
                    "title": "2 users with passwords that never expire",
                    "severity": "high",
                    "evidence": {"affected_objects": ["a", "b"], "count": 2, "details": "chunk 1"},
                },
                {
                    "title": "3 Users  with passwords that never expire",
                    "severity": "high",
                    "evidence": {"affected_objects": ["b", "c", "d"], "count": 3, "details": "chunk 2"},
                },
            ]
        )
        assert len(merged) == 1
        finding = merged[0]
        assert finding["title"] == "5 users with passwords that never expire"
        assert finding["evidence"]["count"] == 5
        assert finding["affected_count"] == 5
        assert finding["evidence"]["affected_objects"] == ["a", "b", "c", "d"]
        assert finding["evidence"]["details"] == "chunk 1 | chunk 2"

    def test_distinct_titles_kept(self):
        merged = merge_findings([{"title": "A"}, {"title": "B"}, {"title": "a"}])
        assert [f["title"] for f in merged] == ["A", "B"]

    def test_merge_is_idempotent(self):
        findings = [{"title": "1 x", "evidence": {"count": 1}}, {"title": "1 x", "evidence": {"count": 1}}]
        once = merge_findings(findings)
        assert merge_findings(once) == once

    def test_count_from_affected_objects_when_missing(self):
        merged = merge_findings(
            [
                {"title": "Stale GPO", "evidence": {"affected_objects": ["g1"]}},
                {"title": "Stale GPO", "evidence": {"affected_objects": ["g2", "g3"]}},
            ]
        )
        assert merged[0]["evidence"]["count"] == 3
        assert merged[0]["title"] == "Stale GPO"

    def test_untitled_findings_are_not_merged(self):
        assert len(merge_findings([{"severity": "low"}, {"severity": "low"}])) == 2

    def test_normalize_title(self):
        assert normalize_title(" 1,234  Users\tWITH spn ") == "users with spn"

    def test_scalar_affected_objects_are_merged(self):
        merged = merge_findings(
            [
                {"title": "1 stale user", "evidence": {"affected_objects": 3}},
                {"title": "1 stale user", "evidence": {"affected_objects": ["u2"]}},
            ]
        )
        assert merged[0]["evidence"]["affected_objects"] == [3, "u2"]
        assert merged[0]["evidence"]["count"] == 2
