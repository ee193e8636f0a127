"""Pure builders turning cached CLI data into API response payloads."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from mission_control import pricing
from mission_control.models import (
    CostProvider,
    CronJob,
    OpenClawStatus,
    ProviderTextSummary,
    SessionList,
    SessionListEntry,
    SessionRecord,
)

ACTIVE_WINDOW_MS = 5 * 60 * 1000
AT_CAPACITY_PERCENT = 95
RECENT_SESSIONS_LIMIT = 10
# Sessions without an input/output split are assumed to be mostly prompt.
ESTIMATED_INPUT_SHARE = 0.85
CODEXBAR_PROVIDERS = frozenset({"claude", "codex"})
DEFAULT_CONTEXT_TOKENS = 200_000


def format_age(ms: float) -> str:
    if ms < 60_000:
        return f"{round(ms / 1000)}s ago"
    if ms < 3_600_000:
        return f"{round(ms / 60_000)}m ago"
    if ms < 86_400_000:
        return f"{round(ms / 3_600_000)}h ago"
    return f"{round(ms / 86_400_000)}d ago"


def format_duration(ms: float) -> str:
    if ms < 60_000:
        return f"{round(ms / 1000)}s"
    if ms < 3_600_000:
        return f"{round(ms / 60_000)}m"
    hours = ms / 3_600_000
    return f"{int(hours)}h" if hours == int(hours) else f"{hours:.1f}h"


def _iso_from_ms(ms: Optional[int]) -> Optional[str]:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _round2(value: float) -> float:
    return round(value, 2)


# --- status ---


def _session_payload(session: SessionRecord) -> dict[str, Any]:
    return {
        "agentId": session.agent_id,
        "key": session.key,
        "kind": session.kind,
        "model": session.model,
        "percentUsed": session.percent_used,
        "totalTokens": session.total_tokens,
        "remainingTokens": session.remaining_tokens,
        "contextTokens": session.context_tokens,
        "updatedAt": session.updated_at,
        "age": session.age,
    }


def _agent_status(latest: Optional[SessionRecord]) -> str:
    if latest is None:
        return "idle"
    if (latest.age or 0) < ACTIVE_WINDOW_MS:
        return "active"
    if (latest.percent_used or 0) >= AT_CAPACITY_PERCENT:
        return "waiting"
    return "idle"


def empty_status_payload(gateway_url: str, error: Optional[str] = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "gateway": {"status": "disconnected", "url": gateway_url},
        "agents": [],
        "sessions": {"total": 0, "atCapacity": 0, "recent": []},
        "heartbeat": {"defaultAgentId": "main", "nextHeartbeats": []},
        "channels": [],
    }
    if error:
        payload["error"] = error
    return payload


def build_status_payload(status: OpenClawStatus, gateway_url: str, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    recent = status.sessions.recent

    by_agent: dict[str, list[SessionRecord]] = defaultdict(list)
    for session in recent:
        by_agent[session.agent_id].append(session)

    agents: list[dict[str, Any]] = []
    for heartbeat in status.heartbeat.agents:
        sessions = by_agent.get(heartbeat.agent_id, [])
        latest = sessions[0] if sessions else None
        agents.append(
            {
                "id": heartbeat.agent_id,
                "name": heartbeat.agent_id[:1].upper() + heartbeat.agent_id[1:],
                "enabled": heartbeat.enabled,
                "status": _agent_status(latest),
                "model": latest.model if latest else None,
                "heartbeatInterval": heartbeat.every,
                "heartbeatIntervalMs": heartbeat.every_ms,
                "lastActivity": (now - timedelta(milliseconds=latest.age or 0)).isoformat() if latest else None,
                "lastActivityAge": format_age(latest.age or 0) if latest else "never",
                "activeSessions": len(sessions),
                "totalTokensUsed": sum(session.total_tokens or 0 for session in sessions),
                "maxSessionPercent": max([0.0, *(session.percent_used or 0 for session in sessions)]),
            }
        )

    next_heartbeats = []
    for heartbeat in status.heartbeat.agents:
        if not heartbeat.enabled or heartbeat.every_ms <= 0:
            continue
        sessions = by_agent.get(heartbeat.agent_id, [])
        last_activity = sessions[0].age if sessions and sessions[0].age is not None else heartbeat.every_ms
        next_in_ms = max(0, heartbeat.every_ms - (last_activity % heartbeat.every_ms))
        next_heartbeats.append(
            {"agentId": heartbeat.agent_id, "nextIn": format_duration(next_in_ms), "nextInMs": next_in_ms}
        )
    next_heartbeats.sort(key=lambda item: item["nextInMs"])

    return {
        "gateway": {"status": "connected", "url": gateway_url},
        "agents": agents,
        "sessions": {
            "total": status.sessions.count,
            "atCapacity": sum(1 for session in recent if (session.percent_used or 0) >= AT_CAPACITY_PERCENT),
            "recent": [_session_payload(session) for session in recent[:RECENT_SESSIONS_LIMIT]],
        },
        "heartbeat": {
            "defaultAgentId": status.heartbeat.default_agent_id,
            "nextHeartbeats": next_heartbeats,
        },
        "channels": status.channel_summary,
    }


def build_heartbeat_rows(status: OpenClawStatus) -> list[dict[str, Any]]:
    configs = {agent.id: agent for agent in status.agents.agents}
    session_counts = {entry.agent_id: entry.count for entry in status.sessions.by_agent}

    rows: list[dict[str, Any]] = []
    for heartbeat in status.heartbeat.agents:
        if not heartbeat.enabled or heartbeat.every_ms <= 0:
            continue
        agent = configs.get(heartbeat.agent_id)
        session_count = session_counts.get(heartbeat.agent_id, 0)
        if agent and agent.sessions_count:
            session_count = agent.sessions_count
        rows.append(
            {
                "agentId": heartbeat.agent_id,
                "enabled": heartbeat.enabled,
                "intervalMs": heartbeat.every_ms,
                "intervalHuman": format_duration(heartbeat.every_ms),
                "model": heartbeat.model,
                "agentName": (agent.name if agent and agent.name else heartbeat.agent_id),
                "sessionCount": session_count,
                "prompt": heartbeat.prompt or "(default heartbeat prompt)",
                "lastUpdatedAt": agent.last_updated_at if agent else None,
                "lastActiveAge": format_duration(agent.last_active_age_ms)
                if agent and agent.last_active_age_ms
                else None,
                "workspaceDir": agent.workspace_dir if agent else None,
            }
        )
    return rows


# --- sessions ---


def _session_agent_id(key: str) -> str:
    # Keys look like ``agent:<agentId>:<rest>``.
    parts = key.split(":")
    return parts[1] if len(parts) > 1 and parts[1] else "main"


def normalize_session(session: SessionListEntry) -> dict[str, Any]:
    input_tokens = session.input_tokens or 0
    output_tokens = session.output_tokens or 0
    return {
        "key": session.key,
        "kind": session.kind or "direct",
        "agentId": _session_agent_id(session.key),
        "model": session.model or "unknown",
        "tokens": {
            "used": session.total_tokens or (input_tokens + output_tokens),
            "limit": session.context_tokens or DEFAULT_CONTEXT_TOKENS,
            "input": input_tokens,
            "output": output_tokens,
        },
        "lastActivity": _iso_from_ms(session.updated_at),
        "sessionId": session.session_id,
        "abortedLastRun": session.aborted_last_run,
    }


def build_sessions_payload(sessions: SessionList) -> list[dict[str, Any]]:
    """Normalized sessions, most recently updated first."""
    ordered = sorted(sessions.sessions, key=lambda session: session.updated_at or 0, reverse=True)
    return [normalize_session(session) for session in ordered]


# --- costs ---


def _estimated_split(session: SessionRecord) -> tuple[int, int]:
    total_tokens = session.total_tokens or 0
    input_tokens = session.input_tokens or round(total_tokens * ESTIMATED_INPUT_SHARE)
    output_tokens = session.output_tokens or round(total_tokens * (1 - ESTIMATED_INPUT_SHARE))
    return input_tokens, output_tokens


def build_cost_payload(
    providers: list[CostProvider],
    text_summaries: list[ProviderTextSummary],
    status: OpenClawStatus,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Merge codexbar detail, codexbar text totals and session token estimates."""
    today = today or date.today()
    today_str = today.isoformat()
    week_start = (today - timedelta(days=7)).isoformat()
    month_start = today.replace(day=1).isoformat()

    totals = {"today": 0.0, "week": 0.0, "month": 0.0}
    by_provider: dict[str, float] = {}
    by_model: dict[str, dict[str, Any]] = {}
    by_agent: dict[str, dict[str, Any]] = {}
    raw: list[dict[str, Any]] = []

    def _model_row(name: str) -> dict[str, Any]:
        if name not in by_model:
            by_model[name] = {
                "cost": 0.0,
                "inputTokens": 0,
                "outputTokens": 0,
                "pricing": pricing.model_pricing_summary(name),
            }
        return by_model[name]

    for provider in providers:
        by_provider.setdefault(provider.provider, 0.0)
        for day in provider.daily:
            day_cost = day.cost()
            in_month = day.date >= month_start
            if day.date == today_str:
                totals["today"] += day_cost
            if day.date >= week_start:
                totals["week"] += day_cost
            if in_month:
                totals["month"] += day_cost
                by_provider[provider.provider] += day_cost

            for breakdown in day.model_breakdowns:
                row = _model_row(breakdown.model_name)
                if in_month:
                    row["cost"] += breakdown.cost
                    row["inputTokens"] += day.input_tokens
                    row["outputTokens"] += day.output_tokens
                raw.append(
                    {
                        "timestamp": f"{day.date}T00:00:00Z",
                        "provider": provider.provider,
                        "model": breakdown.model_name,
                        "input_tokens": day.input_tokens,
                        "output_tokens": day.output_tokens,
                        "cache_read_tokens": day.cache_read_tokens,
                        "cache_creation_tokens": day.cache_creation_tokens,
                        "total_cost": breakdown.cost,
                        "source": "codexbar",
                    }
                )

    # The text summary refreshes faster than the JSON detail.
    text_today = sum(summary.today for summary in text_summaries)
    text_month = sum(summary.month for summary in text_summaries)
    totals["today"] = max(totals["today"], text_today)
    totals["month"] = max(totals["month"], text_month)

    estimates: dict[str, dict[str, Any]] = {}
    for agent_sessions in status.sessions.by_agent:
        agent_row = by_agent.setdefault(
            agent_sessions.agent_id,
            {"cost": 0.0, "tokens": 0, "sessions": 0, "models": []},
        )
        for session in agent_sessions.recent:
            model = session.model or ""
            total_tokens = session.total_tokens or 0
            agent_row["sessions"] += 1
            agent_row["tokens"] += total_tokens
            if model and model not in agent_row["models"]:
                agent_row["models"].append(model)

            if pricing.identify_provider(model) in CODEXBAR_PROVIDERS:
                continue

            input_tokens, output_tokens = _estimated_split(session)
            cost, provider_id = pricing.calculate_token_cost(model, input_tokens, output_tokens)
            agent_row["cost"] += cost

            estimate = estimates.setdefault(
                provider_id,
                {"inputTokens": 0, "outputTokens": 0, "cost": 0.0, "sessions": 0},
            )
            estimate["inputTokens"] += input_tokens
            estimate["outputTokens"] += output_tokens
            estimate["cost"] += cost
            estimate["sessions"] += 1

            row = _model_row(model or "unknown")
            row["cost"] += cost
            row["inputTokens"] += input_tokens
            row["outputTokens"] += output_tokens
            row["sessions"] = row.get("sessions", 0) + 1

    # Session estimates describe current activity, so they count toward every window.
    for provider_id, estimate in estimates.items():
        by_provider[provider_id] = by_provider.get(provider_id, 0.0) + estimate["cost"]
        for window in totals:
            totals[window] += estimate["cost"]

    raw.sort(key=lambda item: item["timestamp"], reverse=True)

    provider_cards = []
    for provider in pricing.PROVIDERS:
        monthly = _round2(by_provider.get(provider.id, 0.0))
        if monthly <= 0 and provider.tracking_method not in {"codexbar", "session-tokens"}:
            continue
        provider_cards.append(
            {
                "id": provider.id,
                "name": provider.name,
                "color": provider.color,
                "unitType": provider.unit_type,
                "trackingMethod": provider.tracking_method,
                "description": provider.description,
                "monthlyCost": monthly,
                "unitPricing": [
                    {
                        "service": price.service,
                        "cost": price.cost_per_unit,
                        "unitLabel": price.unit_label,
                        "unitScale": price.unit_scale,
                        "notes": price.notes,
                    }
                    for price in pricing.unit_prices_for(provider.id)
                ],
            }
        )

    for row in by_model.values():
        row["cost"] = _round2(row["cost"])
    for row in by_agent.values():
        row["cost"] = _round2(row["cost"])

    return {
        "summary": {
            "today": _round2(totals["today"]),
            "week": _round2(totals["week"]),
            "month": _round2(totals["month"]),
            "byProvider": {key: _round2(value) for key, value in by_provider.items()},
            "byModel": by_model,
            "byAgent": by_agent,
        },
        "textSummary": [summary.model_dump() for summary in text_summaries],
        "raw": raw,
        "providers": provider_cards,
        "sessionEstimates": [
            {
                "provider": provider_id,
                "color": pricing.provider_color(provider_id),
                "inputTokens": estimate["inputTokens"],
                "outputTokens": estimate["outputTokens"],
                "estimatedCost": _round2(estimate["cost"]),
                "sessions": estimate["sessions"],
            }
            for provider_id, estimate in estimates.items()
        ],
    }


def _week_start(day: date) -> date:
    # Weeks start on Sunday.
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _series(totals: dict[str, float]) -> list[dict[str, Any]]:
    return [{"date": key, "cost": _round2(value)} for key, value in sorted(totals.items())]


def build_cost_history(providers: list[CostProvider], status: OpenClawStatus) -> dict[str, Any]:
    """Daily, weekly and monthly cost series plus per-model and per-agent totals."""
    daily: dict[str, float] = defaultdict(float)
    by_model: dict[str, float] = defaultdict(float)
    for provider in providers:
        for day in provider.daily:
            daily[day.date] += day.cost()
            for breakdown in day.model_breakdowns:
                by_model[breakdown.model_name] += breakdown.cost

    weekly: dict[str, float] = defaultdict(float)
    monthly: dict[str, float] = defaultdict(float)
    for day_str, cost in daily.items():
        try:
            day = date.fromisoformat(day_str[:10])
        except ValueError:
            continue
        weekly[_week_start(day).isoformat()] += cost
        monthly[day.replace(day=1).isoformat()] += cost

    by_agent: dict[str, float] = defaultdict(float)
    for agent_sessions in status.sessions.by_agent:
        for session in agent_sessions.recent:
            input_tokens, output_tokens = _estimated_split(session)
            cost, _ = pricing.calculate_token_cost(session.model or "", input_tokens, output_tokens)
            by_agent[agent_sessions.agent_id] += cost

    return {
        "daily": _series(daily),
        "weekly": _series(weekly),
        "monthly": _series(monthly),
        "byAgent": {key: _round2(value) for key, value in by_agent.items()},
        "byModel": {key: _round2(value) for key, value in by_model.items()},
    }


# --- cron ---


def normalize_cron_job(job: CronJob) -> dict[str, Any]:
    state = job.state
    last_run = None
    if state.last_run_at_ms:
        last_run = {
            "timestamp": _iso_from_ms(state.last_run_at_ms),
            "status": "success" if state.last_status == "ok" else "failure",
            "error": state.last_error,
        }
    return {
        "id": job.id,
        "name": job.name or job.id,
        "status": "active" if job.enabled else "disabled",
        "schedule": job.schedule,
        "payload": job.payload,
        "sessionTarget": job.session_target,
        "enabled": job.enabled,
        "nextRun": _iso_from_ms(state.next_run_at_ms),
        "lastRun": last_run,
        "agentId": job.agent_id,
    }
