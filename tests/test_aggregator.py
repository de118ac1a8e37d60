"""Tests for joining finished jobs into a summary."""
from unittest.mock import MagicMock

import pytest

from sdkcompat.aggregator import Aggregator
from sdkcompat.model import JobExecution, TriggerKind
from sdkcompat.notify import NotificationError

from conftest import finished


def test_results_sorted_by_sdk(nightly):
    summary = Aggregator().aggregate(
        [finished("meilisearch-rust"), finished("instant-meilisearch"), finished("meilisearch-go")],
        image=nightly,
        trigger=TriggerKind.SCHEDULED,
    )
    assert [r.sdk for r in summary.results] == ["instant-meilisearch", "meilisearch-go", "meilisearch-rust"]
    assert summary.status == "passed"


def test_aggregate_is_idempotent(nightly):
    executions = [finished("meilisearch-js", "failed", commit="abc"), finished("meilisearch-php", "errored")]
    aggregator = Aggregator()
    first = aggregator.aggregate(executions, image=nightly, trigger=TriggerKind.SCHEDULED)
    second = aggregator.aggregate(list(reversed(executions)), image=nightly, trigger=TriggerKind.SCHEDULED)
    assert first.to_json() == second.to_json()
    assert first.digest == second.digest


def test_notifies_once_per_summary(nightly):
    notifier = MagicMock()
    aggregator = Aggregator(notifier=notifier, team="engine team")
    executions = [finished("meilisearch-ruby", "failed")]

    aggregator.aggregate(executions, image=nightly, trigger=TriggerKind.SCHEDULED)
    aggregator.aggregate(executions, image=nightly, trigger=TriggerKind.SCHEDULED)

    notifier.send.assert_called_once()
    notification = notifier.send.call_args[0][0]
    assert notification.team == "engine team"
    assert [f.sdk for f in notification.failures] == ["meilisearch-ruby"]


def test_passing_run_is_not_notified(nightly):
    notifier = MagicMock()
    Aggregator(notifier=notifier).aggregate([finished("meilisearch-go")], image=nightly, trigger=TriggerKind.MANUAL)
    notifier.send.assert_not_called()


def test_notification_error_does_not_change_summary(nightly, capsys):
    notifier = MagicMock()
    notifier.send.side_effect = NotificationError("webhook down")
    summary = Aggregator(notifier=notifier).aggregate(
        [finished("meilisearch-go", "failed")], image=nightly, trigger=TriggerKind.MANUAL
    )
    assert summary.failed
    assert "webhook down" in capsys.readouterr().err


def test_unfinished_jobs_are_rejected(nightly):
    running = JobExecution(sdk="meilisearch-go")
    running.start()
    with pytest.raises(ValueError, match="unfinished"):
        Aggregator().aggregate([running], image=nightly, trigger=TriggerKind.MANUAL)


def test_duplicate_executions_are_rejected(nightly):
    with pytest.raises(ValueError, match="Duplicate"):
        Aggregator().aggregate([finished("a"), finished("a")], image=nightly, trigger=TriggerKind.MANUAL)
