import asyncio

import pytest

from ballotcommit.config import Settings
from ballotcommit.endpoints import FailoverEndpointResolver, StaticEndpointResolver
from ballotcommit.models import SubmissionStatus
from ballotcommit.pipeline import build_pipeline, build_resolver
from ballotcommit.scheduler import RetryScheduler
from fakes import FakeLedger, RecordingSleep


def test_resolver_choice_follows_configured_urls():
    assert isinstance(build_resolver(Settings(backend_urls=["http://a"])), StaticEndpointResolver)
    assert isinstance(build_resolver(Settings(backend_urls=["http://a", "http://b"])), FailoverEndpointResolver)


def test_pipeline_requires_claim_secret():
    with pytest.raises(RuntimeError):
        build_pipeline(Settings(backend_urls=["http://a"]), ledger=FakeLedger())


def test_each_pipeline_is_isolated():
    settings = Settings(backend_urls=["http://a"], claim_signing_secret="s", max_retries=1)

    first = build_pipeline(settings, ledger=FakeLedger())
    second = build_pipeline(settings, ledger=FakeLedger())

    assert first.coordinator is not second.coordinator
    assert first.coordinator.statistics()["total"] == 0


def test_retry_scheduler_cancellation():
    sleep = RecordingSleep()
    scheduler = RetryScheduler(sleep=sleep)
    kept = scheduler.schedule("vote_a", attempt=1, delay=5.0)
    dropped = scheduler.schedule("vote_b", attempt=2, delay=10.0)

    assert scheduler.cancel("vote_b") is True
    assert scheduler.cancel("vote_b") is False
    assert asyncio.run(scheduler.wait(kept)) is True
    assert asyncio.run(scheduler.wait(dropped)) is False
    assert sleep.delays == [5.0]
    assert SubmissionStatus.CONFIRMED.is_terminal and not SubmissionStatus.PENDING.is_terminal
