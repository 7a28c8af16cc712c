"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import ProcessRequestSchema, RunRecord, RunSubmitResponse
from models.errors import InvalidRequestError
from services.runner import RunnerService, build_default_runner

router = APIRouter()


def get_runner() -> RunnerService:
    return build_default_runner()


@router.post(
    "/runs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=RunSubmitResponse,
    summary="Submit a sensor file for processing into one or more outputs.",
)
async def submit_run(
    payload: ProcessRequestSchema,
    runner: RunnerService = Depends(get_runner),
) -> RunSubmitResponse:
    try:
        run_id = runner.submit(payload)
    except InvalidRequestError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return RunSubmitResponse(run_id=run_id)


@router.get(
    "/runs",
    response_model=list[RunRecord],
    summary="List submitted runs, newest first.",
)
async def list_runs(runner: RunnerService = Depends(get_runner)) -> list[RunRecord]:
    return runner.store.scan()


@router.get(
    "/runs/{run_id}",
    response_model=RunRecord,
    summary="Fetch status, statistics and per-output results for a run.",
)
async def get_run(
    run_id: str,
    runner: RunnerService = Depends(get_runner),
) -> RunRecord:
    try:
        return runner.fetch(run_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
