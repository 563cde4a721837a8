"""Tests for the webhook receiver and its FastAPI routes."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from converthub_jobs.api.app import create_app
from converthub_jobs.audit import AuditLog
from converthub_jobs.dispatcher import NotificationDispatcher
from converthub_jobs.webhook import ReceiverOptions, WebhookReceiver


@pytest.fixture
def audit(tmp_path):
    return AuditLog(tmp_path / "webhook_events.log")


@pytest.fixture
def mailer():
    return MagicMock()


@pytest.fixture
def hook():
    return MagicMock()


@pytest.fixture
def download_transport():
    return httpx.MockTransport(lambda request: httpx.Response(200, content=b"converted"))


@pytest.fixture
def make_receiver(audit, mailer, hook, download_transport, tmp_path):
    def factory(**options):
        dispatcher = NotificationDispatcher(mailer=mailer, persistence_hook=hook, transport=download_transport)
        options.setdefault("download_dir", tmp_path / "downloads")
        return WebhookReceiver(audit, dispatcher, ReceiverOptions(**options))

    return factory


@pytest.fixture
def completed_event(completed_result):
    return {
        "event": "conversion.completed",
        "job_id": "j1",
        "result": completed_result,
        "metadata": {"user_id": "u1", "order_id": "o1"},
    }


@pytest.fixture
def failed_event():
    return {
        "event": "conversion.failed",
        "job_id": "j2",
        "error": {"code": "SYSTEM_ERROR", "message": "Worker crashed"},
        "metadata": {"user_email": "user@test", "request_id": "req-7"},
    }


def body(payload) -> bytes:
    return json.dumps(payload).encode()


class TestCompleted:
    def test_acknowledges_and_audits_once(self, make_receiver, audit, completed_event):
        """Should respond 200 and write exactly one audit line."""
        response = make_receiver().handle(body(completed_event))

        assert response.status_code == 200
        assert response.body == {"status": "received"}
        records = audit.read_all()
        assert len(records) == 1
        assert records[0]["data"] == completed_event

    def test_runs_configured_side_effects(self, make_receiver, mailer, hook, completed_event, tmp_path):
        receiver = make_receiver(auto_download=True, notification_email="ops@test")

        _, handled = receiver.process(body(completed_event))

        assert (tmp_path / "downloads" / "j1.docx").read_bytes() == b"converted"
        mailer.send.assert_called_once()
        recipient, subject, _ = mailer.send.call_args.args
        assert recipient == "ops@test"
        assert subject == "ConvertHub: Conversion Complete - Job j1"
        hook.assert_called_once_with("j1", "completed", completed_event["result"]["download_url"], None)
        assert handled.actions == [
            "update_user_history",
            "update_order",
            "file_downloaded",
            "notification_sent",
            "persistence_hook",
        ]

    @pytest.mark.parametrize("job_id, fmt", [("../escaped", "txt"), ("..", "docx"), ("j1", "../../x"), ("j1", "doc/x")])
    def test_download_never_leaves_download_dir(self, make_receiver, completed_event, tmp_path, job_id, fmt):
        """Job ids and formats that would escape the download folder skip the download only."""
        completed_event["job_id"] = job_id
        completed_event["result"]["format"] = fmt

        response, handled = make_receiver(auto_download=True).process(body(completed_event))

        assert response.status_code == 200
        assert "file_downloaded" not in handled.actions
        assert "persistence_hook" in handled.actions
        written = sorted(p.relative_to(tmp_path).as_posix() for p in tmp_path.rglob("*") if p.is_file())
        assert written == ["webhook_events.log"]

    def test_side_effect_failures_do_not_change_response(self, audit, mailer, hook, completed_event, tmp_path):
        """Download, mail and hook failures are logged, not returned."""
        mailer.send.side_effect = OSError("smtp down")
        hook.side_effect = RuntimeError("db down")
        dispatcher = NotificationDispatcher(
            mailer=mailer,
            persistence_hook=hook,
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        receiver = WebhookReceiver(
            audit,
            dispatcher,
            ReceiverOptions(auto_download=True, download_dir=tmp_path, notification_email="ops@test"),
        )

        response, handled = receiver.process(body(completed_event))

        assert response.status_code == 200
        assert handled.actions == ["update_user_history", "update_order"]
        assert len(audit.read_all()) == 1

    def test_redelivery_is_processed_again(self, make_receiver, hook, audit, completed_event):
        """Re-deliveries are not deduplicated."""
        receiver = make_receiver()

        receiver.handle(body(completed_event))
        receiver.handle(body(completed_event))

        assert hook.call_count == 2
        assert len(audit.read_all()) == 2


class TestFailed:
    def test_notifies_user_hook_and_admin(self, make_receiver, mailer, hook, failed_event):
        """SYSTEM_ERROR failures also alert the admin."""
        receiver = make_receiver(admin_email="admin@test")

        response, handled = receiver.process(body(failed_event))

        assert response.status_code == 200
        sends = mailer.send.call_args_list
        assert [c.args[0] for c in sends] == ["user@test", "admin@test"]
        assert sends[1].args[1] == "ALERT: ConvertHub System Error - Job j2"
        assert sends[1].kwargs == {"high_priority": True}
        hook.assert_called_once_with("req-7", "failed", None, "Worker crashed")
        assert handled.actions == ["failure_notification_sent", "persistence_hook", "admin_alert_sent"]

    def test_non_system_error_skips_admin_alert(self, make_receiver, mailer, failed_event):
        failed_event["error"]["code"] = "INVALID_FILE"

        make_receiver(admin_email="admin@test").handle(body(failed_event))

        assert [c.args[0] for c in mailer.send.call_args_list] == ["user@test"]

    def test_without_metadata_only_logs(self, make_receiver, mailer, hook, caplog):
        payload = {"event": "conversion.failed", "job_id": "j3", "error": {"message": "bad"}}

        with caplog.at_level(logging.WARNING, logger="converthub_jobs.webhook"):
            _, handled = make_receiver().process(body(payload))

        assert handled.actions == []
        mailer.send.assert_not_called()
        hook.assert_not_called()
        assert "code=UNKNOWN" in caplog.text


class TestRejected:
    @pytest.mark.parametrize("raw", [b"{}", b"not json", b"", b"[1, 2]", b'{"job_id": "j1"}'])
    def test_invalid_payload_is_400_and_audited(self, make_receiver, audit, raw):
        """Rejected deliveries are still audited."""
        response = make_receiver().handle(raw)

        assert response.status_code == 400
        assert response.body == {"error": "Invalid webhook payload"}
        assert len(audit.read_all()) == 1

    def test_unparseable_body_is_audited_raw(self, make_receiver, audit):
        make_receiver().handle(b"not json")

        assert audit.read_all()[0]["data"] == {"raw": "not json"}

    def test_unknown_event_is_acknowledged_with_warning(self, make_receiver, mailer, hook, audit, caplog):
        """Should acknowledge unknown events with a single warning and no side effects."""
        with caplog.at_level(logging.WARNING, logger="converthub_jobs.webhook"):
            response = make_receiver(notification_email="ops@test").handle(
                body({"event": "conversion.started", "job_id": "j1"})
            )

        assert response.status_code == 200
        warnings = [r for r in caplog.records if r.name == "converthub_jobs.webhook" and r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "conversion.started" in warnings[0].getMessage()
        mailer.send.assert_not_called()
        hook.assert_not_called()
        assert len(audit.read_all()) == 1


class TestRoutes:
    @pytest.fixture
    def client(self, make_receiver):
        return TestClient(create_app(make_receiver()))

    @pytest.mark.parametrize("path", ["/webhooks/converthub", "/webhook"])
    def test_completed_delivery(self, client, audit, completed_event, path):
        response = client.post(path, content=body(completed_event), headers={"Content-Type": "application/json"})

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        assert len(audit.read_all()) == 1

    def test_empty_object_is_rejected(self, client, audit):
        response = client.post("/webhooks/converthub", content=b"{}")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid webhook payload"}
        assert len(audit.read_all()) == 1

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
