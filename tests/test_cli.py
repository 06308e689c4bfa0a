"""CLI tests for operational commands."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from swapmylook.cli.admin import main, parse_args, print_queue_stats, prune_receipts
from swapmylook.core.timezone import utc_now
from swapmylook.models.webhook_receipt import WebhookReceipt
from swapmylook.repositories.webhook_receipt import WebhookReceiptRepository


class TestParseArgs:
    def test_worker_command(self):
        args = parse_args(["worker", "--worker-id", "box-1"])

        assert args.command == "worker"
        assert args.worker_id == "box-1"
        assert args.verbose is False

    def test_prune_receipts_default_days(self):
        args = parse_args(["-v", "prune-receipts"])

        assert args.command == "prune-receipts"
        assert args.days == 30
        assert args.verbose is True

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


def test_main_rejects_non_positive_days(capsys, monkeypatch):
    monkeypatch.setattr("swapmylook.cli.admin.configure_logging", lambda settings: None)

    exit_code = main(["prune-receipts", "--days", "0"])

    assert exit_code == 1
    assert "--days must be at least 1" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_prune_receipts_deletes_old_rows(session, settings):
    repo = WebhookReceiptRepository(session)
    await repo.record("payments", "msg_ancient")
    await repo.record("payments", "msg_recent")
    await session.execute(
        update(WebhookReceipt)
        .where(WebhookReceipt.webhook_id == "msg_ancient")
        .values(created_at=utc_now() - timedelta(days=90))
    )
    await session.commit()

    exit_code = await prune_receipts(settings, days=30)

    assert exit_code == 0
    assert await repo.get_by_webhook_id("msg_ancient") is None
    assert await repo.get_by_webhook_id("msg_recent") is not None


@pytest.mark.asyncio
async def test_queue_stats_output(settings, make_job, capsys):
    await make_job()
    await make_job()

    exit_code = await print_queue_stats(settings)

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "Items in queue: 2" in output
    assert "queued: 2" in output
