"""Endpoints for biometric samples and wellness scores."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import Genie
from src.models.base import ErrorDetail
from src.models.vitals import (
    IngestResponse,
    InstantScoreRead,
    LongTermScoreRead,
    SampleIn,
    SampleRead,
    ScoreRecordRead,
)
from src.wearables.base import to_naive_utc
from src.wearables.errors import InvariantViolation, StoreHaltedError
from src.wearables.scoring import ScoreEngine

router = APIRouter(prefix="/vitals", tags=["vitals"])


# ---------- Samples ----------

@router.post(
    "/samples",
    response_model=IngestResponse,
    status_code=201,
    responses={503: {"model": ErrorDetail}},
)
def ingest_sample(genie: Genie, body: SampleIn) -> Any:
    try:
        sample = genie.ingest(body.to_sample())
    except (StoreHaltedError, InvariantViolation) as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"sequence_id": sample.sequence_id, "timestamp": sample.timestamp}


@router.get("/samples/latest", response_model=SampleRead)
def latest_sample(genie: Genie) -> Any:
    sample = genie.latest()
    if sample is None:
        raise HTTPException(status_code=404, detail="No samples stored")
    return SampleRead.model_validate(sample)


@router.get("/samples", response_model=list[SampleRead])
def list_samples(
    genie: Genie,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> Any:
    """Samples in ``[start, end]`` newest first, or the most recent ``limit``."""
    if start is not None and end is not None:
        samples = genie.store.query(to_naive_utc(start), to_naive_utc(end))[:limit]
    else:
        samples = genie.store.recent(limit)
    return [SampleRead.model_validate(s) for s in samples]


# ---------- Scores ----------

@router.get("/scores/instant", response_model=InstantScoreRead)
def instant_score(genie: Genie) -> Any:
    sample = genie.latest()
    if sample is None:
        raise HTTPException(status_code=404, detail="No samples stored")
    scores = genie.instant_score(sample)
    return {
        "sequence_id": sample.sequence_id,
        "scores": scores.as_dict(),
        "status": ScoreEngine.health_status(scores.overall),
        "recommendations": ScoreEngine.recommendations(scores),
    }


@router.get("/scores/long-term", response_model=LongTermScoreRead)
def long_term_score(genie: Genie) -> Any:
    result = genie.long_term_score()
    data = dataclasses.asdict(result)
    data["status"] = ScoreEngine.health_status(result.scores.overall)
    return data


@router.post("/scores", response_model=ScoreRecordRead, status_code=201)
def record_score(genie: Genie) -> Any:
    record = genie.record_score()
    if record is None:
        raise HTTPException(status_code=404, detail="No samples stored")
    return ScoreRecordRead.model_validate(record)


@router.get("/scores/latest", response_model=ScoreRecordRead)
def latest_score(genie: Genie) -> Any:
    record = genie.store.latest_score()
    if record is None:
        raise HTTPException(status_code=404, detail="No scores stored")
    return ScoreRecordRead.model_validate(record)


@router.get("/scores", response_model=list[ScoreRecordRead])
def list_scores(genie: Genie, start: datetime, end: datetime) -> Any:
    records = genie.store.scores_in_range(to_naive_utc(start), to_naive_utc(end))
    return [ScoreRecordRead.model_validate(r) for r in records]
