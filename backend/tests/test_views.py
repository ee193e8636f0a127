from datetime import date

from mission_control import pricing, views
from mission_control.models import CostProvider, CronJob, OpenClawStatus, ProviderTextSummary, SessionListEntry


def test_format_helpers():
    assert views.format_age(5_000) == "5s ago"
    assert views.format_age(2 * 3_600_000) == "2h ago"
    assert views.format_age(3 * 86_400_000) == "3d ago"
    assert views.format_duration(45_000) == "45s"
    assert views.format_duration(3_600_000) == "1h"
    assert views.format_duration(5_400_000) == "1.5h"


def test_model_pricing_lookup_prefers_specific_names():
    assert pricing.find_model_pricing("claude-sonnet-4-5-20250929").model == "claude-sonnet-4-5"
    assert pricing.find_model_pricing("openrouter/gemini-2.5-flash").model == "gemini-2.5-flash"
    assert pricing.find_model_pricing("mystery-model") is None
    assert pricing.model_pricing_summary("mystery-model") == "Pricing unknown"


def test_calculate_token_cost():
    cost, provider = pricing.calculate_token_cost("grok-4", 1_000_000, 100_000)

    assert provider == "xai"
    assert round(cost, 2) == 4.5
    assert pricing.calculate_token_cost("mystery-model", 10, 10) == (0.0, "unknown")


def test_cost_payload_windows_and_text_totals():
    providers = [
        CostProvider.model_validate(
            {
                "provider": "claude",
                "daily": [
                    {"date": "2026-10-19", "totalCost": 2.0, "modelBreakdowns": [{"modelName": "claude-opus-4-6", "cost": 2.0}]},
                    {"date": "2026-10-15", "totalCost": 3.0, "modelBreakdowns": [{"modelName": "claude-opus-4-6", "cost": "n/a"}]},
                    {"date": "2026-09-20", "modelBreakdowns": [{"modelName": "claude-sonnet-4", "cost": 7.0}]},
                ],
            }
        )
    ]
    text = [ProviderTextSummary(provider="claude", today=6.0, month=4.0)]

    payload = views.build_cost_payload(providers, text, OpenClawStatus(), today=date(2026, 10, 19))

    summary = payload["summary"]
    assert summary["today"] == 6.0
    assert summary["week"] == 5.0
    assert summary["month"] == 5.0
    assert summary["byProvider"] == {"claude": 5.0}
    assert summary["byModel"]["claude-opus-4-6"]["cost"] == 2.0
    assert summary["byModel"]["claude-sonnet-4"]["cost"] == 0.0
    assert [row["timestamp"][:10] for row in payload["raw"]] == ["2026-10-19", "2026-10-15", "2026-09-20"]
    assert payload["sessionEstimates"] == []


def test_normalize_cron_job_defaults():
    job = CronJob.model_validate(
        {"id": "cleanup", "enabled": False, "state": {"lastRunAtMs": 1000, "lastStatus": "error", "lastError": "boom"}}
    )

    row = views.normalize_cron_job(job)

    assert row["name"] == "cleanup"
    assert row["status"] == "disabled"
    assert row["nextRun"] is None
    assert row["lastRun"] == {"timestamp": "1970-01-01T00:00:01+00:00", "status": "failure", "error": "boom"}


def test_empty_status_payload_shape():
    payload = views.empty_status_payload("ws://127.0.0.1:18789", error="timed out")

    assert payload["gateway"] == {"status": "disconnected", "url": "ws://127.0.0.1:18789"}
    assert payload["sessions"] == {"total": 0, "atCapacity": 0, "recent": []}
    assert payload["error"] == "timed out"


def test_cost_history_buckets_weeks_from_sunday():
    providers = [
        CostProvider.model_validate(
            {
                "provider": "claude",
                "daily": [
                    {"date": "2026-10-17", "totalCost": 1.25, "modelBreakdowns": [{"modelName": "claude-opus-4-6", "cost": 1.25}]},
                    {"date": "2026-10-18", "modelBreakdowns": [{"modelName": "claude-opus-4-6", "cost": 2.0}]},
                ],
            }
        ),
        CostProvider.model_validate(
            {"provider": "codex", "daily": [{"date": "2026-11-02", "totalCost": 0.75, "modelBreakdowns": [{"modelName": "gpt-5", "cost": 0.75}]}]}
        ),
    ]
    status = OpenClawStatus.model_validate(
        {
            "sessions": {
                "byAgent": [
                    {"agentId": "builder", "recent": [{"model": "grok-4", "inputTokens": 1_000_000, "outputTokens": 100_000}]},
                ]
            }
        }
    )

    history = views.build_cost_history(providers, status)

    assert history["daily"] == [
        {"date": "2026-10-17", "cost": 1.25},
        {"date": "2026-10-18", "cost": 2.0},
        {"date": "2026-11-02", "cost": 0.75},
    ]
    assert history["weekly"] == [
        {"date": "2026-10-11", "cost": 1.25},
        {"date": "2026-10-18", "cost": 2.0},
        {"date": "2026-11-01", "cost": 0.75},
    ]
    assert history["monthly"] == [{"date": "2026-10-01", "cost": 3.25}, {"date": "2026-11-01", "cost": 0.75}]
    assert history["byModel"] == {"claude-opus-4-6": 3.25, "gpt-5": 0.75}
    assert history["byAgent"] == {"builder": 4.5}


def test_normalize_session_defaults():
    session = SessionListEntry.model_validate({"key": "agent:ops:cron:backup", "inputTokens": 40, "outputTokens": 2})

    normalized = views.normalize_session(session)

    assert normalized["agentId"] == "ops"
    assert normalized["kind"] == "direct"
    assert normalized["model"] == "unknown"
    assert normalized["tokens"] == {"used": 42, "limit": views.DEFAULT_CONTEXT_TOKENS, "input": 40, "output": 2}
    assert normalized["lastActivity"] is None
    assert views.normalize_session(SessionListEntry(key="bare"))["agentId"] == "main"
