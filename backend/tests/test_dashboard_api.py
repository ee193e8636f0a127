import json

from fastapi.testclient import TestClient

from mission_control.datasets import Datasets
from mission_control.errors import CommandTimeout, ProcessFailed
from mission_control.main import app
from mission_control.runner import CommandResult
import mission_control.config as config_module
import mission_control.main as main_module


STATUS = {
    "heartbeat": {
        "defaultAgentId": "main",
        "agents": [
            {"agentId": "main", "enabled": True, "every": "30m", "everyMs": 1800000, "model": "claude-opus-4"},
            {"agentId": "scout", "enabled": False, "every": "0", "everyMs": 0},
        ],
    },
    "sessions": {
        "count": 2,
        "recent": [
            {"agentId": "main", "key": "agent:main:main", "model": "claude-opus-4", "percentUsed": 97, "totalTokens": 190000, "age": 600000},
            {"agentId": "scout", "key": "agent:scout:x", "model": "gemini-2.5-flash", "percentUsed": 10, "totalTokens": 20000, "age": 1000},
        ],
        "byAgent": [
            {"agentId": "main", "count": 1, "recent": [{"agentId": "main", "model": "claude-opus-4", "totalTokens": 190000}]},
            {"agentId": "scout", "count": 1, "recent": [{"agentId": "scout", "model": "gemini-2.5-flash", "totalTokens": 20000}]},
        ],
    },
    "agents": {"agents": [{"id": "main", "name": "Main", "sessionsCount": 4}]},
}

COST_TEXT = """Claude Cost (local)
Today: $3.00 · 900K tokens
Last 30 days: $40.00 · 12M tokens
"""

CRON = {
    "jobs": [
        {
            "id": "daily-report",
            "name": "Daily report",
            "enabled": True,
            "schedule": {"kind": "cron", "expr": "0 9 * * *"},
            "state": {"nextRunAtMs": 1760864400000, "lastRunAtMs": 1760778000000, "lastStatus": "ok"},
        }
    ]
}


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRunner:
    """Answers CLI invocations from a table keyed by the argv tail."""

    def __init__(self, outputs=None):
        self.outputs = dict(outputs or {})
        self.calls: list[list[str]] = []

    async def __call__(self, argv, *, timeout_seconds, env_overrides=None, accept_partial_output=False):
        self.calls.append(list(argv))
        outcome = self.outputs.get(" ".join(argv[1:]), "")
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return CommandResult(argv=tuple(argv), returncode=0, stdout=outcome, stderr="")

    def commands(self) -> list[str]:
        return [" ".join(call[1:]) for call in self.calls]


def _install(monkeypatch, outputs=None, clock=None):
    runner = FakeRunner(outputs)
    store = Datasets(run=runner, clock=clock or FakeClock())
    monkeypatch.setattr(main_module, "datasets", store)
    monkeypatch.setattr(main_module, "run_command", runner)
    return runner, store


def test_status_builds_dashboard_payload(monkeypatch):
    _install(monkeypatch, {"status --json": json.dumps(STATUS)})

    response = TestClient(app).get("/api/status")

    assert response.status_code == 200
    payload = response.json()
    assert payload["gateway"]["status"] == "connected"
    assert [agent["id"] for agent in payload["agents"]] == ["main", "scout"]
    main_agent = payload["agents"][0]
    assert main_agent["status"] == "waiting"
    assert main_agent["lastActivityAge"] == "10m ago"
    assert payload["agents"][1]["status"] == "active"
    assert payload["sessions"] == {
        "total": 2,
        "atCapacity": 1,
        "recent": payload["sessions"]["recent"],
    }
    assert payload["heartbeat"]["nextHeartbeats"] == [{"agentId": "main", "nextIn": "20m", "nextInMs": 1200000}]
    assert "error" not in payload


def test_status_failure_without_cache_returns_disconnected_payload(monkeypatch):
    _install(monkeypatch, {"status --json": CommandTimeout("openclaw status", 8)})

    response = TestClient(app).get("/api/status")

    assert response.status_code == 200
    payload = response.json()
    assert payload["gateway"]["status"] == "disconnected"
    assert payload["agents"] == []
    assert "timed out" in payload["error"]


def test_status_failure_serves_stale_data_with_error(monkeypatch):
    clock = FakeClock(0.0)
    runner, _ = _install(
        monkeypatch,
        {"status --json": [json.dumps(STATUS), ProcessFailed("openclaw status", 1, "gateway closed")]},
        clock=clock,
    )
    client = TestClient(app)

    client.get("/api/status")
    clock.now = 45.0
    response = client.get("/api/status")

    payload = response.json()
    assert payload["gateway"]["status"] == "connected"
    assert payload["stale"] is True
    assert "gateway closed" in payload["error"]
    assert runner.commands().count("status --json") == 2


def test_status_reads_within_ttl_share_one_command(monkeypatch):
    runner, _ = _install(monkeypatch, {"status --json": json.dumps(STATUS)})
    client = TestClient(app)

    for _ in range(3):
        assert client.get("/api/status").status_code == 200
    client.get("/api/heartbeat")

    assert runner.commands() == ["status --json"]


def test_trigger_heartbeat_invalidates_status(monkeypatch):
    runner, _ = _install(
        monkeypatch,
        {
            "status --json": json.dumps(STATUS),
            "cron wake --mode now --text Manual heartbeat trigger from Mission Control": "woke\n",
        },
    )
    client = TestClient(app)
    client.get("/api/status")

    response = client.post("/api/status", json={"action": "trigger-heartbeat"})
    client.get("/api/status")

    assert response.status_code == 200
    assert response.json() == {"success": True, "output": "woke"}
    assert runner.commands().count("status --json") == 2


def test_trigger_heartbeat_failure_returns_502(monkeypatch):
    _install(
        monkeypatch,
        {"cron wake --mode now --text Manual heartbeat trigger from Mission Control": CommandTimeout("openclaw cron wake", 10)},
    )

    response = TestClient(app).post("/api/status", json={"action": "trigger-heartbeat"})

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_status_unknown_action_is_rejected(monkeypatch):
    _install(monkeypatch)

    response = TestClient(app).post("/api/status", json={"action": "reboot"})

    assert response.status_code == 400


def test_heartbeat_rows_and_single_agent_lookup(monkeypatch):
    _install(monkeypatch, {"status --json": json.dumps(STATUS)})
    client = TestClient(app)

    rows = client.get("/api/heartbeat").json()["heartbeats"]
    single = client.get("/api/heartbeat", params={"agentId": "main"})
    missing = client.get("/api/heartbeat", params={"agentId": "scout"})

    assert [row["agentId"] for row in rows] == ["main"]
    assert rows[0]["agentName"] == "Main"
    assert rows[0]["sessionCount"] == 4
    assert rows[0]["intervalHuman"] == "30m"
    assert single.json()["agentId"] == "main"
    assert missing.status_code == 404


def test_heartbeat_trigger_rejects_unsafe_agent_id(monkeypatch):
    runner, _ = _install(monkeypatch)

    response = TestClient(app).post("/api/heartbeat", json={"action": "trigger", "agentId": "main; rm -rf /"})

    assert response.status_code == 422
    assert runner.calls == []


def test_heartbeat_trigger_reports_sent_even_when_cli_fails(monkeypatch):
    _install(monkeypatch, {"wake --agent main --reason manual-dashboard": ProcessFailed("openclaw wake", 2, "unknown flag")})

    response = TestClient(app).post("/api/heartbeat", json={"action": "trigger", "agentId": "main"})

    assert response.status_code == 200
    assert response.json()["note"] == "Wake event sent"


def test_costs_merge_sources_and_report_failed_keys(monkeypatch):
    _install(
        monkeypatch,
        {
            "status --json": json.dumps(STATUS),
            "cost --provider all": COST_TEXT,
            "cost --format json --provider all": CommandTimeout("codexbar cost", 15),
        },
    )

    response = TestClient(app).get("/api/costs")

    assert response.status_code == 200
    payload = response.json()
    assert payload["summary"]["today"] >= 3.0
    assert payload["summary"]["month"] >= 40.0
    assert payload["textSummary"][0]["provider"] == "claude"
    assert list(payload["errors"]) == ["cost-summary-json"]
    assert [estimate["provider"] for estimate in payload["sessionEstimates"]] == ["google"]


def test_cron_list_is_normalized(monkeypatch):
    _install(monkeypatch, {"cron list --all --json": "[plugins] ready\n" + json.dumps(CRON)})

    response = TestClient(app).get("/api/cron")

    assert response.status_code == 200
    job = response.json()["jobs"][0]
    assert job["id"] == "daily-report"
    assert job["status"] == "active"
    assert job["lastRun"]["status"] == "success"
    assert job["nextRun"].startswith("2025-10-19")


def test_cron_run_invalidates_cron_cache(monkeypatch):
    runner, _ = _install(
        monkeypatch,
        {
            "cron list --all --json": json.dumps(CRON),
            "cron run daily-report --force --json": '{"ok": true}',
        },
    )
    client = TestClient(app)

    client.get("/api/cron")
    client.get("/api/cron")
    run = client.post("/api/cron", json={"action": "run", "jobId": "daily-report"})
    client.get("/api/cron")

    assert run.json() == {"success": True, "output": '{"ok": true}'}
    assert runner.commands().count("cron list --all --json") == 2


def test_cron_actions_validate_input(monkeypatch):
    runner, _ = _install(monkeypatch)
    client = TestClient(app)

    bad_id = client.post("/api/cron", json={"action": "run", "jobId": "../etc"})
    bad_expr = client.post("/api/cron", json={"action": "update-schedule", "jobId": "daily", "cronExpr": "0 9 *"})
    unknown = client.post("/api/cron", json={"action": "delete"})

    assert bad_id.status_code == 400
    assert bad_expr.status_code == 400
    assert unknown.status_code == 400
    assert runner.calls == []


def test_bulk_schedule_update_reports_per_job_results(monkeypatch):
    runner, _ = _install(
        monkeypatch,
        {
            "cron edit daily --cron 0 9 * * *": "updated",
            "cron edit weekly --cron 0 9 * * 1": ProcessFailed("openclaw cron edit", 1, "job not found"),
        },
    )

    response = TestClient(app).post(
        "/api/cron",
        json={
            "action": "bulk-update-schedules",
            "updates": [
                {"jobId": "daily", "cronExpr": "0 9 * * *"},
                {"jobId": "weekly", "cronExpr": "0 9 * * 1"},
                {"jobId": "", "cronExpr": "0 9 * * *"},
            ],
        },
    )

    results = response.json()["results"]
    assert [result["success"] for result in results] == [True, False, False]
    assert "job not found" in results[1]["error"]
    assert runner.commands() == ["cron edit daily --cron 0 9 * * *", "cron edit weekly --cron 0 9 * * 1"]


def test_cache_stats_expose_every_key(monkeypatch):
    _install(monkeypatch, {"status --json": json.dumps(STATUS)})
    client = TestClient(app)
    client.get("/api/status")

    caches = client.get("/api/cache").json()["caches"]

    assert set(caches) == {"runtime-status", "cost-summary-text", "cost-summary-json", "cron-list", "sessions"}
    assert caches["runtime-status"]["cached"] is True
    assert caches["cron-list"]["cached"] is False


SESSIONS = {
    "sessions": [
        {
            "key": "agent:main:main",
            "kind": "direct",
            "sessionId": "s-main",
            "updatedAt": 1760860000000,
            "totalTokens": 5000,
            "contextTokens": 1000000,
            "model": "claude-opus-4-6",
        },
        {"key": "agent:scout:cron:nightly", "sessionId": "s-scout", "updatedAt": 1760870000000, "inputTokens": 100, "outputTokens": 50},
    ]
}

COST_HISTORY_JSON = [
    {
        "provider": "claude",
        "daily": [
            {"date": "2026-09-30", "totalCost": 4.0, "modelBreakdowns": [{"modelName": "claude-sonnet-4", "cost": 4.0}]},
            {"date": "2026-10-13", "totalCost": 1.0, "modelBreakdowns": [{"modelName": "claude-opus-4-6", "cost": 1.0}]},
            {"date": "2026-10-18", "totalCost": 2.5, "modelBreakdowns": [{"modelName": "claude-opus-4-6", "cost": 2.5}]},
        ],
    },
    {
        "provider": "codex",
        "daily": [{"date": "2026-10-13", "totalCost": 0.5, "modelBreakdowns": [{"modelName": "gpt-5", "cost": 0.5}]}],
    },
]


def test_sessions_are_normalized_newest_first(monkeypatch):
    runner, _ = _install(monkeypatch, {"sessions list --json": "[plugins] ready\n" + json.dumps(SESSIONS)})
    client = TestClient(app)

    response = client.get("/api/sessions")
    client.get("/api/sessions")

    assert response.status_code == 200
    sessions = response.json()["sessions"]
    assert [session["agentId"] for session in sessions] == ["scout", "main"]
    assert sessions[0]["tokens"] == {"used": 150, "limit": 200000, "input": 100, "output": 50}
    assert sessions[0]["model"] == "unknown"
    assert sessions[0]["kind"] == "direct"
    assert sessions[1]["tokens"]["limit"] == 1000000
    assert runner.commands() == ["sessions list --json"]


def test_sessions_failure_returns_empty_list_with_error(monkeypatch):
    _install(monkeypatch, {"sessions list --json": ProcessFailed("openclaw sessions list", 1, "gateway closed")})

    response = TestClient(app).get("/api/sessions")

    assert response.status_code == 200
    assert response.json()["sessions"] == []
    assert "gateway closed" in response.json()["error"]


def test_cost_history_shares_cost_cache_with_costs_route(monkeypatch):
    runner, _ = _install(
        monkeypatch,
        {
            "status --json": json.dumps(STATUS),
            "cost --provider all": COST_TEXT,
            "cost --format json --provider all": json.dumps(COST_HISTORY_JSON),
        },
    )
    client = TestClient(app)

    client.get("/api/costs")
    response = client.get("/api/costs/history")

    assert response.status_code == 200
    payload = response.json()
    assert payload["daily"] == [
        {"date": "2026-09-30", "cost": 4.0},
        {"date": "2026-10-13", "cost": 1.5},
        {"date": "2026-10-18", "cost": 2.5},
    ]
    assert payload["weekly"] == [
        {"date": "2026-09-27", "cost": 4.0},
        {"date": "2026-10-11", "cost": 1.5},
        {"date": "2026-10-18", "cost": 2.5},
    ]
    assert payload["monthly"] == [{"date": "2026-09-01", "cost": 4.0}, {"date": "2026-10-01", "cost": 4.0}]
    assert payload["byModel"] == {"claude-sonnet-4": 4.0, "claude-opus-4-6": 3.5, "gpt-5": 0.5}
    assert set(payload["byAgent"]) == {"main", "scout"}
    assert payload["errors"] == {}
    assert runner.commands().count("cost --format json --provider all") == 1
    assert runner.commands().count("status --json") == 1


def test_cron_keeps_last_good_jobs_when_refetch_after_run_fails(monkeypatch):
    runner, _ = _install(
        monkeypatch,
        {
            "cron list --all --json": [json.dumps(CRON), CommandTimeout("openclaw cron list", 15)],
            "cron run daily-report --force --json": '{"ok": true}',
        },
    )
    client = TestClient(app)

    client.get("/api/cron")
    client.post("/api/cron", json={"action": "run", "jobId": "daily-report"})
    response = client.get("/api/cron")

    payload = response.json()
    assert [job["id"] for job in payload["jobs"]] == ["daily-report"]
    assert "timed out" in payload["error"]
    assert runner.commands().count("cron list --all --json") == 2


def test_unexecutable_cli_degrades_to_error_payload(tmp_path, monkeypatch):
    script = tmp_path / "openclaw"
    script.write_text("#!/bin/sh\necho '{}'\n", encoding="utf-8")
    script.chmod(0o600)
    monkeypatch.setattr(config_module, "OPENCLAW_BIN", str(script))
    monkeypatch.setattr(main_module, "datasets", Datasets(clock=FakeClock()))

    response = TestClient(app).get("/api/cron")

    assert response.status_code == 200
    assert response.json()["jobs"] == []
    assert "Cannot execute" in response.json()["error"]
