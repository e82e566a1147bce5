"""
Daily tasks: plan generation, readiness snapshot, operator completion, ledger.
Readiness is computed per request at server time; clients poll as often as they like.
"""
from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from dailytasks.services.daily_task_engine import DailyTaskEngine, TaskReadiness
from dailytasks.services.daily_task_types import AccountInfo, CompletedDailyTask, RequestItem
from dailytasks.services.errors import GatewayError, PlanInvariantError
from dailytasks.services.readiness import readiness_counts

router = APIRouter()


def get_engine(request: Request) -> DailyTaskEngine:
    """Process-wide engine created at startup"""
    return request.app.state.engine


class ReadinessView(BaseModel):
    state: str
    ready: bool
    blocked: bool
    remaining_seconds: int
    eta: Optional[datetime] = None


class TaskView(BaseModel):
    batch_index: int
    account: AccountInfo
    target_date: date
    event_token: str
    time_spent: int
    # Rendered request text shared by the group's items
    content: str
    requests: List[RequestItem]
    completed: List[int]
    readiness: ReadinessView


class BatchView(BaseModel):
    batch_index: int
    tasks: List[TaskView]


class PlanResponse(BaseModel):
    now: datetime
    batches: List[BatchView]
    counts: Dict[str, int]


class WarningView(BaseModel):
    code: str
    message: str
    game_id: Optional[int] = None
    account_id: Optional[int] = None


class GenerateResponse(BaseModel):
    target_date: date
    batch_count: int
    task_count: int
    warnings: List[WarningView]


class CompleteRequest(BaseModel):
    account_id: int
    request_index: int
    batch_index: int


class CompleteResponse(BaseModel):
    status: str
    account_id: int
    batch_index: int
    group_completed: bool
    batch_removed: bool
    ledger_entry: Optional[CompletedDailyTask] = None


def _task_view(item: TaskReadiness) -> TaskView:
    task = item.task
    group = task.request_groups[0] if task.request_groups else None
    readiness = item.readiness
    return TaskView(
        batch_index=item.batch_index,
        account=task.account,
        target_date=task.target_date,
        event_token=group.event_token if group else "",
        time_spent=group.time_spent if group else 0,
        content=next((r.content for r in task.requests if r.content), ""),
        requests=task.requests,
        completed=sorted(task.completed),
        readiness=ReadinessView(
            state=readiness.state.value,
            ready=readiness.ready,
            blocked=readiness.blocked,
            remaining_seconds=readiness.remaining_seconds,
            eta=readiness.eta,
        ),
    )


@router.post("/daily-tasks/generate", response_model=GenerateResponse)
def generate_daily_tasks(engine: DailyTaskEngine = Depends(get_engine)) -> GenerateResponse:
    """Rebuild today's batch plan from the catalog. Replaces any previous plan."""
    result = engine.generate()
    return GenerateResponse(**result.to_dict())


@router.get("/daily-tasks", response_model=PlanResponse)
def get_daily_tasks(engine: DailyTaskEngine = Depends(get_engine)) -> PlanResponse:
    now, evaluated = engine.evaluate_now()

    batches: List[BatchView] = []
    for item in evaluated:
        if not batches or batches[-1].batch_index != item.batch_index:
            batches.append(BatchView(batch_index=item.batch_index, tasks=[]))
        batches[-1].tasks.append(_task_view(item))

    counts = readiness_counts(item.readiness for item in evaluated)
    return PlanResponse(now=now, batches=batches, counts=counts)


@router.get("/daily-tasks/unready", response_model=List[TaskView])
def get_unready_daily_tasks(engine: DailyTaskEngine = Depends(get_engine)) -> List[TaskView]:
    """Tasks that cannot run yet, soonest first; blocked tasks last."""
    return [_task_view(item) for item in engine.unready()]


@router.post("/daily-tasks/complete", response_model=CompleteResponse)
def complete_daily_task(
    payload: CompleteRequest,
    engine: DailyTaskEngine = Depends(get_engine),
) -> CompleteResponse:
    try:
        outcome = engine.complete(payload.account_id, payload.request_index, payload.batch_index)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=f"GATEWAY_ERROR: {e}")
    except PlanInvariantError as e:
        raise HTTPException(status_code=409, detail=f"PLAN_INVARIANT: {e}")
    return CompleteResponse(**outcome.to_dict())


@router.get("/daily-tasks/completed", response_model=List[CompletedDailyTask])
def get_completed_today(engine: DailyTaskEngine = Depends(get_engine)) -> List[CompletedDailyTask]:
    return engine.completed_today()


@router.delete("/daily-tasks/completed", status_code=204)
def clear_completed_today(engine: DailyTaskEngine = Depends(get_engine)) -> None:
    engine.clear_completed_today()
