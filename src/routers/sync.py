"""Endpoints for manual sync, sync status, and local store maintenance."""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Query

from src.dependencies import Genie
from src.models.vitals import (
    ClearedResponse,
    DailySummaryRead,
    QueueItemRead,
    StoreStatsRead,
    SyncReportRead,
    SyncStatusRead,
)

router = APIRouter(tags=["sync"])


# ---------- Sync ----------

@router.post("/sync", response_model=SyncReportRead)
async def sync_now(genie: Genie) -> Any:
    """Run one sync pass now, bypassing the network gate."""
    report = await genie.sync_now()
    data = dataclasses.asdict(report)
    data["outcome"] = report.outcome.value
    return data


@router.get("/sync/status", response_model=SyncStatusRead)
def sync_status(genie: Genie) -> Any:
    return {
        "is_syncing": genie.is_syncing(),
        "last_sync_time": genie.last_sync_time(),
        "background_running": genie.coordinator.running,
    }


@router.get("/sync/summaries", response_model=list[DailySummaryRead])
def remote_summaries(genie: Genie) -> Any:
    return [dataclasses.asdict(s) for s in genie.remote_summaries()]


@router.delete("/sync/remote-data")
async def erase_remote_data(genie: Genie) -> dict:
    return {"erased": await genie.erase_remote_data()}


# ---------- Maintenance ----------

@router.get("/maintenance/stats", response_model=StoreStatsRead)
def store_stats(genie: Genie) -> Any:
    data = dataclasses.asdict(genie.stats())
    data["halted"] = genie.store.halted
    data["lost_since_start"] = genie.queue.lost_count
    return data


@router.get("/maintenance/queue/stuck", response_model=list[QueueItemRead])
def stuck_items(genie: Genie, limit: int = Query(default=100, ge=1, le=1000)) -> Any:
    return [
        {
            "id": item.id,
            "target_table": item.target_table,
            "record_id": item.record_id,
            "action": item.action,
            "retry_count": item.retry_count,
            "created_at": item.created_at,
            "last_attempt": item.last_attempt,
            "payload": item.payload.model_dump(mode="json"),
        }
        for item in genie.queue.stuck(limit)
    ]


@router.delete("/maintenance/queue/stuck", response_model=ClearedResponse)
def clear_stuck(genie: Genie) -> Any:
    return {"cleared": genie.queue.clear_stuck()}


@router.post("/maintenance/store/reset-halt", response_model=StoreStatsRead)
def reset_halt(genie: Genie) -> Any:
    genie.store.reset_halt()
    return store_stats(genie)
