import asyncio

from openreader.workflows.aggregator import Aggregator, dedup_records
from openreader.workflows.connectors.base import Connector
from openreader.workflows.records import CandidateRecord, Readable
from openreader.workflows.resolver_config import ResolverConfig


class StaticConnector(Connector):
    def __init__(self, name, records, *, delay=0.0, error=None):
        super().__init__(None, ResolverConfig())
        self.name = name
        self.records = records
        self.delay = delay
        self.error = error
        self.calls = 0

    async def _search(self, query, page):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.records)


class CountingChecker:
    def __init__(self):
        self.batches = []

    async def batch_check_readability(self, session, records, *, max_probes=None, probe=True):
        self.batches.append(list(records))
        return list(records)


def _config(**overrides):
    overrides.setdefault("source_timeout", 0.3)
    overrides.setdefault("retry_timeout", 0.2)
    overrides.setdefault("probe_enabled", False)
    return ResolverConfig(**overrides)


def test_dedup_keeps_first_canonical_record():
    ol = CandidateRecord(provider="openlibrary", provider_id="OL1W", archive_id="prideprejudice00aust")
    ia = CandidateRecord(provider="archive", provider_id="prideprejudice00aust", archive_id="prideprejudice00aust")
    gut = CandidateRecord(provider="gutenberg", provider_id="1342")
    assert dedup_records([ol, gut, ia]) == [ol, gut]


def test_slow_and_failing_sources_do_not_fail_the_search():
    fast = StaticConnector("gutenberg", [CandidateRecord(provider="gutenberg", provider_id="1", title="Economics")])
    slow = StaticConnector("loc", [CandidateRecord(provider="loc", provider_id="2")], delay=2.0)
    broken = StaticConnector("oapen", [], error=RuntimeError("boom"))

    async def run():
        aggregator = Aggregator(None, _config(), connectors=[fast, slow, broken])
        return await aggregator.search("economics")

    records = asyncio.run(run())
    assert [r.provider_id for r in records] == ["1"]


def test_source_deadline_leaves_room_for_one_retry():
    # slower than the first attempt window, inside first attempt plus retry
    lagging = StaticConnector("oapen", [CandidateRecord(provider="oapen", provider_id="h1", title="Economics")], delay=0.4)

    async def run():
        aggregator = Aggregator(None, _config(), connectors=[lagging])
        return await aggregator.search("economics")

    assert [r.provider_id for r in asyncio.run(run())] == ["h1"]


def test_search_results_are_cached_per_query_and_page():
    source = StaticConnector("gutenberg", [CandidateRecord(provider="gutenberg", provider_id="1")])

    async def run():
        aggregator = Aggregator(None, _config(), connectors=[source])
        first = await aggregator.search("Austen")
        again = await aggregator.search("austen ")
        other_page = await aggregator.search("austen", page=2)
        return first, again, other_page

    first, again, other_page = asyncio.run(run())
    assert first == again == other_page
    assert source.calls == 2


def test_ranked_search_orders_by_relevance_and_probes():
    records = [
        CandidateRecord(provider="archive", provider_id="cash", title="Clinton Cash", archive_id="cash"),
        CandidateRecord(provider="doab", provider_id="d1", title="Economics in Africa", readable=Readable.MAYBE),
    ]
    source = StaticConnector("archive", records)
    checker = CountingChecker()

    async def run():
        aggregator = Aggregator(None, _config(probe_enabled=True), connectors=[source], checker=checker)
        return await aggregator.search("economics in africa", ranked=True)

    ranked = asyncio.run(run())
    assert [r.provider_id for r in ranked] == ["d1", "cash"]
    assert ranked[0].relevance_score > ranked[1].relevance_score
    assert len(checker.batches) == 1


def test_empty_query_short_circuits():
    source = StaticConnector("gutenberg", [CandidateRecord(provider="gutenberg", provider_id="1")])
    assert asyncio.run(Aggregator(None, _config(), connectors=[source]).search("  ")) == []
    assert source.calls == 0
