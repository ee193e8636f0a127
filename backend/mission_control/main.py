"""Mission Control API: dashboard backend for the OpenClaw runtime."""

import asyncio
import logging
import re
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mission_control import config, gateway, views
from mission_control.approvals_store import approvals_store
from mission_control.datasets import datasets
from mission_control.errors import CommandError
from mission_control.log_redact import install_log_redaction
from mission_control.models import (
    ApprovalActionRequest,
    ApprovalCreateRequest,
    ApprovalDeleteRequest,
    ApprovalRequest,
    CronActionRequest,
    GatewayInvokeRequest,
    HeartbeatActionRequest,
    StatusActionRequest,
)
from mission_control.runner import run_command

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("mission_control.api")

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_-]*$")
CRON_FIELD_COUNT = 5
MANUAL_HEARTBEAT_TEXT = "Manual heartbeat trigger from Mission Control"


def _log_startup_env_warnings() -> None:
    search_path = config.command_env()["PATH"]
    for binary in (config.OPENCLAW_BIN, config.CODEXBAR_BIN):
        if shutil.which(binary, path=search_path) is None:
            logger.warning("%s was not found on PATH; related panels will report errors.", binary)
    if not config.OPENCLAW_GATEWAY_TOKEN:
        logger.warning("OPENCLAW_GATEWAY_TOKEN is not set; gateway proxy calls are unauthenticated.")


@asynccontextmanager
async def _lifespan(_: FastAPI):
    install_log_redaction()
    _log_startup_env_warnings()
    if config.WARM_CACHES_ON_STARTUP:
        datasets.warm()
    yield


# --- App ---
app = FastAPI(
    title="Mission Control",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    lifespan=_lifespan,
)

if config.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )


def _command_failure(exc: CommandError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"success": False, "error": str(exc)},
    )


def _validate_job_id(job_id: Optional[str]) -> str:
    if not job_id or not JOB_ID_PATTERN.match(job_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing or invalid jobId")
    return job_id


def _validate_cron_expr(cron_expr: Optional[str]) -> str:
    expr = (cron_expr or "").strip()
    if not expr:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing or invalid cronExpr")
    if len(expr.split()) < CRON_FIELD_COUNT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid cron expression: expected {CRON_FIELD_COUNT} fields",
        )
    return expr


# --- Status & heartbeats ---


@app.get("/api/status")
async def get_status():
    gateway_url = config.OPENCLAW_GATEWAY_URL
    try:
        result = await datasets.status.get_or_default()
        if result.error and not result.stale:
            return views.empty_status_payload(gateway_url, error=result.error)
        payload = views.build_status_payload(result.data, gateway_url)
    except Exception:
        logger.exception("Failed building status payload")
        return views.empty_status_payload(gateway_url, error="Failed to build status")
    if result.error:
        payload["error"] = result.error
        payload["stale"] = True
    return payload


@app.post("/api/status")
async def post_status_action(payload: StatusActionRequest):
    if payload.action == "trigger-heartbeat":
        try:
            result = await run_command(
                [config.OPENCLAW_BIN, "cron", "wake", "--mode", "now", "--text", MANUAL_HEARTBEAT_TEXT],
                timeout_seconds=config.WAKE_TIMEOUT_SECONDS,
            )
        except CommandError as exc:
            logger.warning("Heartbeat trigger failed: %s", exc)
            return _command_failure(exc)
        datasets.status.invalidate()
        return {"success": True, "output": result.stdout.strip()}

    if payload.action == "skip-heartbeat":
        return {"success": False, "error": "Skip heartbeat is not supported by the runtime"}

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown action")


@app.get("/api/heartbeat")
async def get_heartbeats(agent_id: Optional[str] = Query(default=None, alias="agentId")):
    result = await datasets.status.get_or_default()
    rows = views.build_heartbeat_rows(result.data)

    if agent_id:
        for row in rows:
            if row["agentId"] == agent_id:
                return row
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Agent {agent_id!r} not found or heartbeat disabled",
        )

    response: dict[str, Any] = {"heartbeats": rows}
    if result.error:
        response["error"] = result.error
    return response


@app.post("/api/heartbeat")
async def post_heartbeat_action(payload: HeartbeatActionRequest):
    if payload.action == "trigger":
        try:
            result = await run_command(
                [config.OPENCLAW_BIN, "wake", "--agent", payload.agent_id, "--reason", "manual-dashboard"],
                timeout_seconds=config.WAKE_TIMEOUT_SECONDS,
            )
        except CommandError as exc:
            # Older runtimes reject --agent but still deliver the wake event.
            logger.warning("Wake for agent %s reported failure: %s", payload.agent_id, exc)
            return {"ok": True, "action": "triggered", "agentId": payload.agent_id, "note": "Wake event sent"}
        datasets.status.invalidate()
        return {"ok": True, "action": "triggered", "agentId": payload.agent_id, "output": result.stdout.strip()}

    if payload.action == "skip":
        return {
            "ok": True,
            "action": "skipped",
            "agentId": payload.agent_id,
            "note": "Next heartbeat for this agent marked as skipped in the UI.",
        }

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown action: {payload.action}")


# --- Costs ---


@app.get("/api/costs")
async def get_costs():
    text_result, json_result, status_result = await asyncio.gather(
        datasets.cost_text.get_or_default(),
        datasets.cost_json.get_or_default(),
        datasets.status.get_or_default(),
    )
    errors = {
        dataset.key.value: result.error
        for dataset, result in (
            (datasets.cost_text, text_result),
            (datasets.cost_json, json_result),
            (datasets.status, status_result),
        )
        if result.error
    }

    try:
        payload = views.build_cost_payload(json_result.data, text_result.data, status_result.data)
    except Exception:
        logger.exception("Failed building cost payload")
        return {
            "summary": {"today": 0, "week": 0, "month": 0, "byProvider": {}, "byModel": {}, "byAgent": {}},
            "raw": [],
            "providers": [],
            "errors": {**errors, "costs": "Failed to build cost summary"},
        }
    payload["errors"] = errors
    return payload


@app.get("/api/costs/history")
async def get_cost_history():
    json_result, status_result = await asyncio.gather(
        datasets.cost_json.get_or_default(),
        datasets.status.get_or_default(),
    )
    payload = views.build_cost_history(json_result.data, status_result.data)
    payload["errors"] = {
        dataset.key.value: result.error
        for dataset, result in ((datasets.cost_json, json_result), (datasets.status, status_result))
        if result.error
    }
    return payload


# --- Sessions ---


@app.get("/api/sessions")
async def get_sessions():
    result = await datasets.sessions.get_or_default()
    response: dict[str, Any] = {"sessions": views.build_sessions_payload(result.data)}
    if result.error:
        response["error"] = result.error
        response["stale"] = result.stale
    return response


# --- Cron ---


@app.get("/api/cron")
async def get_cron_jobs():
    result = await datasets.cron.get_or_default()
    response: dict[str, Any] = {"jobs": [views.normalize_cron_job(job) for job in result.data.jobs]}
    if result.error:
        response["error"] = result.error
    return response


async def _edit_schedule(job_id: str, cron_expr: str):
    return await run_command(
        [config.OPENCLAW_BIN, "cron", "edit", job_id, "--cron", cron_expr],
        timeout_seconds=config.CRON_TIMEOUT_SECONDS,
    )


@app.post("/api/cron")
async def post_cron_action(payload: CronActionRequest):
    if payload.action == "run":
        job_id = _validate_job_id(payload.job_id)
        try:
            result = await run_command(
                [config.OPENCLAW_BIN, "cron", "run", job_id, "--force", "--json"],
                timeout_seconds=config.CRON_ACTION_TIMEOUT_SECONDS,
            )
        except CommandError as exc:
            logger.warning("Cron run for %s failed: %s", job_id, exc)
            return _command_failure(exc)
        datasets.cron.invalidate()
        return {"success": True, "output": result.stdout}

    if payload.action == "update-schedule":
        job_id = _validate_job_id(payload.job_id)
        cron_expr = _validate_cron_expr(payload.cron_expr)
        try:
            result = await _edit_schedule(job_id, cron_expr)
        except CommandError as exc:
            logger.warning("Cron edit for %s failed: %s", job_id, exc)
            return _command_failure(exc)
        datasets.cron.invalidate()
        return {"success": True, "output": result.stdout}

    if payload.action == "bulk-update-schedules":
        if not payload.updates:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing or empty updates array")
        results: list[dict[str, Any]] = []
        for update in payload.updates:
            if not update.job_id or not update.cron_expr:
                results.append({"jobId": update.job_id, "success": False, "error": "Missing jobId or cronExpr"})
                continue
            try:
                job_id = _validate_job_id(update.job_id)
                cron_expr = _validate_cron_expr(update.cron_expr)
                await _edit_schedule(job_id, cron_expr)
            except HTTPException as exc:
                results.append({"jobId": update.job_id, "success": False, "error": exc.detail})
            except CommandError as exc:
                results.append({"jobId": update.job_id, "success": False, "error": str(exc)})
            else:
                results.append({"jobId": update.job_id, "success": True})
        datasets.cron.invalidate()
        return {"success": True, "results": results}

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")


# --- Approvals ---


def _approval_json(approval: ApprovalRequest) -> dict[str, Any]:
    return approval.model_dump(mode="json", by_alias=True, exclude_none=True)


async def _start_autonomous_run(approval: ApprovalRequest) -> None:
    hook = Path(config.APPROVALS_HOOK_PATH)
    if not hook.is_file():
        logger.info("Approval hook %s not installed; skipping autonomous start", hook)
        return
    try:
        await run_command(
            [str(hook), "start", approval.agent, approval.title, "--involvement", "medium", "--auto-approved"],
            timeout_seconds=config.APPROVALS_HOOK_TIMEOUT_SECONDS,
        )
    except CommandError as exc:
        logger.warning("Failed to start autonomous run for %s: %s", approval.id, exc)


@app.get("/api/approvals")
async def get_approvals(
    approval_status: str = Query(default="all", alias="status"),
    stats: bool = Query(default=False),
):
    if stats:
        return await asyncio.to_thread(approvals_store.stats)
    approvals = await asyncio.to_thread(approvals_store.list_approvals, approval_status)
    return {"approvals": [_approval_json(approval) for approval in approvals]}


@app.post("/api/approvals", status_code=status.HTTP_201_CREATED)
async def create_approval(payload: ApprovalCreateRequest):
    approval = await asyncio.to_thread(approvals_store.add, payload)
    logger.info("Queued approval %s from agent %s", approval.id, approval.agent)
    return {"approval": _approval_json(approval)}


@app.patch("/api/approvals")
async def update_approval(payload: ApprovalActionRequest):
    if payload.action == "approve":
        approval = await asyncio.to_thread(approvals_store.approve, payload.id, payload.notes)
        if approval is not None:
            await _start_autonomous_run(approval)
    elif payload.action == "reject":
        approval = await asyncio.to_thread(approvals_store.reject, payload.id, payload.notes)
    else:
        approval = await asyncio.to_thread(approvals_store.update, payload.id, payload.updates)

    if approval is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval not found")
    return {"approval": _approval_json(approval)}


@app.delete("/api/approvals")
async def delete_approval(payload: ApprovalDeleteRequest):
    deleted = await asyncio.to_thread(approvals_store.delete, payload.id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval not found")
    return {"success": True}


# --- Gateway & diagnostics ---


@app.post("/api/gateway")
async def post_gateway(payload: GatewayInvokeRequest):
    try:
        reply = await gateway.invoke(payload.method, payload.params)
    except httpx.HTTPError as exc:
        logger.warning("Gateway call %s failed (%s)", payload.method, exc.__class__.__name__)
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"error": "Gateway unreachable"})
    return JSONResponse(status_code=reply.status_code, content=reply.body)


@app.get("/api/cache")
async def get_cache_stats():
    return {"caches": datasets.registry.stats()}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
