"""Tests for keyword extraction and auto-search scoring."""

import asyncio

import pytest

from patchwise.errors import RunCancelledError
from patchwise.intent.file_search import (
    HIGH_CONFIDENCE_THRESHOLD, MAX_KEYWORDS, extract_search_keywords,
    filename_stem, search_files_for_edit,
)
from patchwise.runs import RunRegistry


def _index_search(index):
    """search_by_name over a fixed list of paths (filename substring match)."""
    def search(_root, keyword):
        return [p for p in index if keyword in p.rsplit("/", 1)[-1].lower()]
    return search


class TestExtractSearchKeywords:
    def test_lowercases_and_drops_stop_words(self):
        assert extract_search_keywords("Update the GGUF model selection") == [
            "update", "gguf", "model", "selection"]

    def test_splits_underscores(self):
        kws = extract_search_keywords("block sending when DRY_RUN is true")
        assert "dry" in kws and "run" in kws
        assert "is" not in kws

    def test_strips_punctuation_but_keeps_dots_and_dashes(self):
        assert extract_search_keywords("fix config.yaml, my-app!") == [
            "fix", "config.yaml", "my-app"]

    def test_dedupes_and_caps(self):
        msg = " ".join(f"word{i}" for i in range(20)) + " word1"
        kws = extract_search_keywords(msg)
        assert len(kws) == MAX_KEYWORDS
        assert len(set(kws)) == len(kws)

    def test_short_tokens_dropped(self):
        assert extract_search_keywords("a b cd") == ["cd"]


def test_filename_stem():
    assert filename_stem("src/core/Runner.ts") == "runner"
    assert filename_stem(".env") == ".env"
    assert filename_stem("Makefile") == "makefile"


class TestSearchFilesForEdit:
    def test_filename_match_ranks_first(self):
        index = ["src/email/sender.ts", "src/models.ts", "docs/notes.md"]
        result = asyncio.run(search_files_for_edit(
            "update sender retries", "/root", _index_search(index)))
        assert result[0].path == "src/email/sender.ts"
        assert all(0.0 <= c.confidence <= 1.0 for c in result)

    def test_preferred_stem_boost(self):
        index = ["src/main.ts", "src/mainframe_notes.ts"]
        result = asyncio.run(search_files_for_edit(
            "change main startup", "/root", _index_search(index)))
        assert result[0].path == "src/main.ts"

    def test_top_candidate_boosted_when_score_is_high(self):
        index = ["src/email/runner.ts"]
        result = asyncio.run(search_files_for_edit(
            "update email runner", "/root", _index_search(index),
            file_list=index))
        # 1.0 (name hit) + 1.2 (two path keywords) + 0.8 (stem) = 3.0
        assert result[0].path == "src/email/runner.ts"
        assert result[0].confidence == 1.0
        assert result[0].confidence >= HIGH_CONFIDENCE_THRESHOLD

    def test_single_weak_hit_is_low_confidence(self):
        result = asyncio.run(search_files_for_edit(
            "fix widgets", "/root", lambda _r, kw: ["lib/widgets/x.ts"] if kw == "widgets" else []))
        assert len(result) == 1
        assert result[0].confidence == pytest.approx(0.25)

    def test_async_search_by_name_supported(self):
        async def search(_root, keyword):
            return ["src/config.ts"] if keyword == "config" else []

        result = asyncio.run(search_files_for_edit("update config defaults", "/r", search))
        assert result[0].path == "src/config.ts"

    def test_no_hits(self):
        result = asyncio.run(search_files_for_edit("update zzz", "/r", lambda _r, _k: []))
        assert result == []

    def test_at_most_five_candidates(self):
        index = [f"src/thing{i}.ts" for i in range(10)]
        result = asyncio.run(search_files_for_edit(
            "update thing", "/r", _index_search(index)))
        assert len(result) == 5
        confidences = [c.confidence for c in result]
        assert confidences == sorted(confidences, reverse=True)

    def test_cancellation_interrupts_search(self):
        registry = RunRegistry()
        run = registry.create_run("run-search")

        async def slow_search(_root, _keyword):
            await asyncio.sleep(10)
            return []

        async def scenario():
            task = asyncio.ensure_future(search_files_for_edit(
                "update slow thing", "/r", slow_search,
                run_id=run.run_id, token=run.token))
            await asyncio.sleep(0.01)
            registry.cancel(run.run_id)
            return await asyncio.wait_for(task, timeout=1)

        with pytest.raises(RunCancelledError):
            asyncio.run(scenario())
