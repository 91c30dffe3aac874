import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import llm_parser
from config import load_settings
from conversation import SessionStore, TurnResult
from database import SqliteTaskRepository, init_db
from errors import AppError, ErrorCode, create_error, handle_error, success, to_error_payload
from models import MessageRequest, ParseTaskRequest, TaskSchedule, TaskStatusUpdate

settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

repository = SqliteTaskRepository()
sessions = SessionStore(ttl_seconds=settings.session_ttl_seconds)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    init_db()
    logger.info("poitto backend started (provider=%s, model=%s)", settings.llm_provider, settings.llm_model)
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code.value, exc.message)
    return JSONResponse(status_code=exc.status_code, content=to_error_payload(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    error = create_error(ErrorCode.INVALID_INPUT, "Request validation failed", str(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=to_error_payload(error))


@app.exception_handler(Exception)
async def unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error")
    error = handle_error(exc)
    return JSONResponse(status_code=error.status_code, content=to_error_payload(error))


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity. The host app authenticates; we only require the header."""
    if not x_user_id or not x_user_id.strip():
        raise create_error(ErrorCode.UNAUTHORIZED, "X-User-Id header is required")
    return x_user_id.strip()


@app.post("/parse-task")
async def parse_task(body: ParseTaskRequest) -> dict:
    if not body.input.strip():
        raise create_error(ErrorCode.INVALID_INPUT, "input is required")

    result, warning = await llm_parser.extract_task(
        body.input,
        body.llm_config,
        previous_context=body.previous_context,
        current_task_info=body.current_task_info,
        current_field=body.current_field,
        settings=settings,
    )
    payload = success(result.model_dump(by_alias=True))
    if warning is not None:
        payload["warning"] = warning.to_dict()
    return payload


def _turn_payload(turn: TurnResult) -> dict:
    data = {
        "state": turn.state.model_dump(by_alias=True),
        "messages": [m.model_dump(by_alias=True) for m in turn.messages],
    }
    if turn.task is not None:
        data["task"] = turn.task.model_dump(by_alias=True)
    if turn.error is not None:
        data["error"] = turn.error.to_dict()
    payload = success(data)
    if turn.warning is not None:
        payload["warning"] = turn.warning.to_dict()
    return payload


@app.post("/conversations")
def start_conversation(user_id: str = Depends(get_user_id)) -> dict:
    session = sessions.create(user_id, repository, settings)
    return success({"sessionId": session.id, "state": session.state.model_dump(by_alias=True)})


@app.get("/conversations/{session_id}")
def get_conversation(session_id: str, user_id: str = Depends(get_user_id)) -> dict:
    session = sessions.get(session_id, user_id)
    return success({"sessionId": session.id, "state": session.state.model_dump(by_alias=True)})


@app.post("/conversations/{session_id}/messages")
async def send_message(session_id: str, body: MessageRequest, user_id: str = Depends(get_user_id)) -> dict:
    session = sessions.get(session_id, user_id)
    turn = await session.send_message(body.content, body.llm_config)
    return _turn_payload(turn)


@app.delete("/conversations/{session_id}")
def reset_conversation(session_id: str, user_id: str = Depends(get_user_id)) -> dict:
    # A turn still waiting on the LLM sees the reset and drops its result
    sessions.get(session_id, user_id).reset()
    sessions.delete(session_id)
    return success({"status": "deleted"})


@app.get("/tasks")
def get_tasks(status: Optional[list[str]] = Query(None), user_id: str = Depends(get_user_id)) -> dict:
    tasks = repository.get_tasks(user_id, status)
    return success([t.model_dump(by_alias=True) for t in tasks])


def _owned_task(task_id: str, user_id: str):
    task = repository.get_task(task_id)
    if task is None:
        raise create_error(ErrorCode.TASK_NOT_FOUND, f"Task not found: {task_id}")
    if task.user_id != user_id:
        raise create_error(ErrorCode.FORBIDDEN, "Task belongs to another user")
    return task


@app.patch("/tasks/{task_id}/status")
def update_task_status(task_id: str, body: TaskStatusUpdate, user_id: str = Depends(get_user_id)) -> dict:
    _owned_task(task_id, user_id)
    task = repository.update_status(task_id, body.status)
    return success(task.model_dump(by_alias=True))


@app.patch("/tasks/{task_id}/schedule")
def schedule_task(task_id: str, body: TaskSchedule, user_id: str = Depends(get_user_id)) -> dict:
    _owned_task(task_id, user_id)
    task = repository.schedule(task_id, body.scheduled_at)
    return success(task.model_dump(by_alias=True))
