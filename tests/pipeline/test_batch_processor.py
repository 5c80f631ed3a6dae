import httpx

from story_ingest.models.domain import BatchState, UpsertOperation
from story_ingest.pipeline.batch import CANCELLED_MESSAGE, BatchProcessor
from story_ingest.services.embedding_cache import EmbeddingCacheManager
from story_ingest.services.enricher import ContentEnricher
from story_ingest.services.persistence import PersistenceWriter
from story_ingest.services.retry import RetryPolicy


def test_batch_persists_every_item_with_its_own_vector(make_kit, item_factory, embed_vector):
    kit = make_kit()
    items = [item_factory(str(n)) for n in range(5)]

    outcome = kit.processor.process(items, source_id=3)

    assert outcome.state == BatchState.DONE
    assert outcome.succeeded == 5
    assert outcome.attempts == 1
    assert all(it.operation == UpsertOperation.INSERT for it in outcome.items)
    for item in items:
        _, record = kit.store.rows[(item.external_id, 3)]
        assert record.embedding == embed_vector(f"{item.title}\n\n{item.content}")


def test_transient_failures_retry_the_whole_batch(make_kit, item_factory):
    kit = make_kit(failures=2)
    items = [item_factory("a"), item_factory("b")]

    outcome = kit.processor.process(items, source_id=1)

    assert outcome.state == BatchState.DONE
    assert outcome.attempts == 3
    assert outcome.succeeded == 2
    assert outcome.failed == 0
    # enrichment runs again on every attempt
    assert kit.enricher.calls == 6


def test_exhausted_retries_fail_every_item_with_last_error(make_kit, item_factory):
    kit = make_kit(failures=10, max_attempts=3)
    items = [item_factory("a"), item_factory("b")]

    outcome = kit.processor.process(items, source_id=1)

    assert outcome.state == BatchState.FAILED
    assert outcome.attempts == 3
    assert outcome.failed == 2
    assert {it.error for it in outcome.items} == {"provider hiccup #3"}
    assert kit.store.rows == {}


def test_single_upsert_failure_only_fails_that_item(make_kit, item_factory):
    kit = make_kit(fail_ids=["b"])
    items = [item_factory("a"), item_factory("b"), item_factory("c")]

    outcome = kit.processor.process(items, source_id=1)

    assert outcome.state == BatchState.DONE
    assert outcome.attempts == 1
    assert [(it.external_id, it.success) for it in outcome.items] == [("a", True), ("b", False), ("c", True)]
    assert "constraint violated" in (outcome.items[1].error or "")


def test_cancelled_before_start_does_no_work(make_kit, item_factory):
    kit = make_kit()
    items = [item_factory("a"), item_factory("b")]

    outcome = kit.processor.process(items, source_id=1, should_stop=lambda: True)

    assert outcome.state == BatchState.CANCELLED
    assert outcome.failed == 2
    assert all(it.error == CANCELLED_MESSAGE for it in outcome.items)
    assert kit.enricher.calls == 0
    assert kit.provider.calls == 0


def test_rerun_reports_updates(make_kit, item_factory):
    kit = make_kit()
    items = [item_factory("a")]

    kit.processor.process(items, source_id=1)
    outcome = kit.processor.process(items, source_id=1)

    assert outcome.items[0].operation == UpsertOperation.UPDATE
    assert outcome.cache_hits == 1
    assert len(kit.store.rows) == 1


def test_fetch_timeout_still_embeds_and_persists_title_only(make_kit, item_factory, embed_vector):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    kit = make_kit()
    processor = BatchProcessor(
        ContentEnricher(client=httpx.Client(transport=httpx.MockTransport(handler))),
        EmbeddingCacheManager(kit.provider, kit.cache_store),
        PersistenceWriter(kit.store),
        RetryPolicy(sleep=lambda _: None),
    )
    item = item_factory("slow", content="")

    outcome = processor.process([item], source_id=1)

    assert outcome.state == BatchState.DONE
    assert outcome.succeeded == 1
    _, record = kit.store.rows[("slow", 1)]
    assert record.content is None
    assert record.embedding == embed_vector(item.title)
