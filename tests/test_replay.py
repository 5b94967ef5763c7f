"""
Tests for notification replay and the command-line interface.
"""
import json

import pytest
from typer.testing import CliRunner

from settlement.config import get_settings
from settlement.workers.cli import app
from settlement.workers.replay import load_notifications, replay_notifications

runner = CliRunner()


class TestLoadNotifications:
    """Test suite for reading stored notifications."""

    @pytest.mark.unit
    def test_single_object(self, tmp_path: any) -> None:
        path = tmp_path / "one.json"
        path.write_text(json.dumps({"id": "inv_1", "external_id": "purchase_1", "status": "PAID"}))
        assert len(load_notifications(path)) == 1

    @pytest.mark.unit
    def test_array(self, tmp_path: any) -> None:
        path = tmp_path / "many.json"
        path.write_text(json.dumps([{"id": "a"}, {"id": "b"}]))
        assert [p["id"] for p in load_notifications(path)] == ["a", "b"]

    @pytest.mark.unit
    def test_json_lines(self, tmp_path: any) -> None:
        path = tmp_path / "events.jsonl"
        path.write_text('{"id": "a"}\n\n{"id": "b"}\n')
        assert [p["id"] for p in load_notifications(path)] == ["a", "b"]

    @pytest.mark.unit
    def test_rejects_non_objects(self, tmp_path: any) -> None:
        path = tmp_path / "bad.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            load_notifications(path)


class TestReplay:
    """Test suite for replaying notifications through the handler."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_replay_reports_each_notification(self, handler: any, seed: any, make_payload: any) -> None:
        item = await seed.item(stock=4)
        order = await seed.order()
        await seed.line_item(item, 1, order_id=order.id)
        payload = make_payload(f"purchase_{order.id}")

        results = await replay_notifications(
            handler,
            [payload, {"status": "PAID"}, payload, make_payload("purchase_999999", gateway_payment_id="inv_other")],
        )

        assert [r["outcome"] for r in results] == ["settled", "error", "already_settled", "error"]
        assert results[1]["error_type"] == "MalformedNotification"
        assert results[3]["error_type"] == "OrderNotResolved"
        assert (await seed.get_item(item.id)).stock == 3


class TestCli:
    """Test suite for the settlement CLI."""

    @pytest.fixture(autouse=True)
    def cli_env(self, tmp_path: any, monkeypatch: any, mocker: any) -> None:
        monkeypatch.setenv("SETTLEMENT_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/cli.db")
        mocker.patch("settlement.workers.cli.setup_logging")
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    @pytest.mark.integration
    def test_init_db_and_health(self) -> None:
        result = runner.invoke(app, ["init-db"])
        assert result.exit_code == 0
        assert "Database initialized" in result.output

        result = runner.invoke(app, ["health"])
        assert result.exit_code == 0
        assert "Database connection successful" in result.output

    @pytest.mark.integration
    def test_replay_test_payload(self, tmp_path: any) -> None:
        path = tmp_path / "dashboard.json"
        path.write_text(json.dumps({"id": "inv_x", "external_id": "invoice_123124123", "status": "PAID"}))

        result = runner.invoke(app, ["replay", str(path), "--json"])

        assert result.exit_code == 0
        assert '"outcome": "test_payload"' in result.output

    @pytest.mark.integration
    def test_replay_malformed_fails(self, tmp_path: any) -> None:
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({"status": "PAID"}))

        result = runner.invoke(app, ["replay", str(path), "--json"])

        assert result.exit_code == 1
        assert "MalformedNotification" in result.output

    @pytest.mark.unit
    def test_replay_missing_file(self, tmp_path: any) -> None:
        result = runner.invoke(app, ["replay", str(tmp_path / "nope.json")])
        assert result.exit_code == 1
        assert "File not found" in result.output
