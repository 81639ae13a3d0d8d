"""Chunked, bounded-concurrency dispatch of category records.

A category's records are split into ``chunk_size`` slices. Slices are sent
in windows of at most ``max_parallel_chunks`` concurrent calls; a window is
awaited in full before the next one is dispatched. Findings from every chunk
are then merged by normalized title.
"""

import asyncio
import logging
import math
import re
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

ChunkCall = Callable[[str], Awaitable[list[dict]]]
PromptFactory = Callable[[list[dict]], str]

_LEADING_COUNT = re.compile(r"^\s*(\d[\d.,]*)\s*")
_WHITESPACE = re.compile(r"\s+")


def split_into_chunks(records: list, chunk_size: int) -> list[list]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [records[i : i + chunk_size] for i in range(0, len(records), chunk_size)]


def normalize_title(title: Any) -> str:
    """Merge key: leading count stripped, whitespace collapsed, casefolded."""
    text = _LEADING_COUNT.sub("", str(title or ""))
    return _WHITESPACE.sub(" ", text).strip().casefold()


def _objects_of(evidence: dict) -> list:
    objects = evidence.get("affected_objects")
    if objects is None:
        return []
    if isinstance(objects, (list, tuple)):
        return list(objects)
    return [objects]


def _count_of(finding: dict) -> int:
    evidence = finding.get("evidence") if isinstance(finding.get("evidence"), dict) else {}
    for value in (evidence.get("count"), finding.get("affected_count")):
        try:
            if value is not None:
                return int(value)
        except (TypeError, ValueError):
            continue
    return len(_objects_of(evidence))


def _merge_pair(target: dict, other: dict) -> None:
    target_ev = dict(target.get("evidence") or {}) if isinstance(target.get("evidence"), dict) else {}
    other_ev = other.get("evidence") if isinstance(other.get("evidence"), dict) else {}

    total = _count_of(target) + _count_of(other)

    objects = _objects_of(target_ev)
    for obj in _objects_of(other_ev):
        if obj not in objects:
            objects.append(obj)

    details = [d for d in str(target_ev.get("details") or "").split(" | ") if d]
    extra = str(other_ev.get("details") or "")
    if extra and extra not in details:
        details.append(extra)

    target_ev.update(affected_objects=objects, count=total, details=" | ".join(details))
    target["evidence"] = target_ev
    target["affected_count"] = total

    title = str(target.get("title") or "")
    if _LEADING_COUNT.match(title):
        target["title"] = _LEADING_COUNT.sub(f"{total} ", title, count=1)


def merge_findings(findings: list[dict]) -> list[dict]:
    """Collapse findings that share a normalized title.

    Merged entries sum their counts, union affected objects, join distinct
    details and rewrite a leading count in the title. Untitled findings are
    kept as they are.
    """
    merged: dict[str, dict] = {}
    untitled: list[dict] = []
    for finding in findings:
        key = normalize_title(finding.get("title"))
        if not key:
            untitled.append(finding)
            continue
        if key in merged:
            _merge_pair(merged[key], finding)
        else:
            merged[key] = dict(finding)
    return list(merged.values()) + untitled


class ChunkScheduler:
    """Runs one category's chunks through ``call`` with bounded concurrency."""

    def __init__(
        self,
        call: ChunkCall,
        chunk_size: int,
        max_parallel_chunks: int,
        on_chunk_done: Optional[Callable[[int, int, int], Awaitable[None]]] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if max_parallel_chunks < 1:
            raise ValueError("max_parallel_chunks must be at least 1")
        self.call = call
        self.chunk_size = chunk_size
        self.max_parallel_chunks = max_parallel_chunks
        self.on_chunk_done = on_chunk_done

    async def _run_chunk(self, index: int, total: int, chunk: list, build_prompt: PromptFactory) -> list[dict]:
        findings = await self.call(build_prompt(chunk))
        if self.on_chunk_done:
            await self.on_chunk_done(index, total, len(findings))
        return findings

    async def run(self, records: list[dict], build_prompt: PromptFactory) -> list[dict]:
        """Analyze ``records`` and return the merged raw findings.

        Raises the first chunk error once its window has settled; later
        windows are not dispatched.
        """
        if len(records) <= self.chunk_size:
            return merge_findings(await self.call(build_prompt(records)))

        chunks = split_into_chunks(records, self.chunk_size)
        total = len(chunks)
        windows = math.ceil(total / self.max_parallel_chunks)
        logger.info(
            f"Large dataset: {len(records)} records in {total} chunks of "
            f"{self.chunk_size}, {windows} windows of up to {self.max_parallel_chunks}"
        )

        collected: list[dict] = []
        for start in range(0, total, self.max_parallel_chunks):
            window = chunks[start : start + self.max_parallel_chunks]
            results = await asyncio.gather(
                *(
                    self._run_chunk(start + offset + 1, total, chunk, build_prompt)
                    for offset, chunk in enumerate(window)
                ),
                return_exceptions=True,
            )
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                logger.error(
                    f"{len(errors)} of {len(window)} chunks failed in window starting at "
                    f"chunk {start + 1}/{total}"
                )
                raise errors[0]
            for result in results:
                collected.extend(result)

        return merge_findings(collected)
