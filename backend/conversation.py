"""
Conversation orchestrator.

One ConversationSession drives one task through the dialog:

    initial -> collecting -> confirming -> completed
                    \\-> cancelled (decline at any point)

The first message goes through full LLM extraction. Later messages are first
matched against the chips of the field last asked about, and only fall back
to the LLM merge when they are free text. Required fields (title, category)
are asked first; optional fields are walked only on turns that start with the
required ones already filled.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import llm_parser
from config import Settings, load_settings
from errors import AppError, ErrorCode, create_error, handle_error
from field_mapping import (
    extract_title_from_input,
    generate_field_question,
    generate_next_question,
    map_selection_to_field,
)
from models import (
    ChatMessage,
    ConversationState,
    LlmConfig,
    MessageType,
    Task,
    TaskCreate,
    TaskInfo,
)
from task_fields import (
    CONFIRM,
    CONFIRM_OPTIONS,
    DECLINE,
    REGISTER_ANYWAY,
    TaskField,
    apply_patch,
    is_task_complete,
    is_valid_title,
    to_task_create,
)
from time_utils import format_date, get_jst_now

logger = logging.getLogger(__name__)

CONFIRM_QUESTION = "以下のタスクを登録しますか？"
CANCELLED_MESSAGE = "タスクの登録をキャンセルしました。"
COMPLETE_MESSAGE = "タスクを登録しました！"
INCOMPLETE_MESSAGE = "タスク情報が不完全です"
TITLE_AND_CATEGORY_REQUIRED = "タスクのタイトルとカテゴリが必要です"
REGISTER_FAILED_MESSAGE = "タスクの登録に失敗しました"


class TaskRepository(Protocol):
    """Persistence collaborator. Only `create` is used by the conversation."""

    def create(self, user_id: str, data: TaskCreate) -> Task: ...

    def get_tasks(self, user_id: str, statuses: Optional[list[str]] = None) -> list[Task]: ...

    def update_status(self, task_id: str, status: str) -> Task: ...

    def schedule(self, task_id: str, scheduled_at: str) -> Task: ...


@dataclass
class TurnResult:
    state: ConversationState
    messages: list[ChatMessage] = field(default_factory=list)
    task: Optional[Task] = None
    warning: Optional[AppError] = None  # LLM fallback was used
    error: Optional[AppError] = None  # validation or persistence failure


def _message(role: str, content: str, type: Optional[MessageType] = None, **kwargs) -> ChatMessage:
    return ChatMessage(id=uuid.uuid4().hex, role=role, content=content, type=type, **kwargs)


class ConversationSession:
    def __init__(
        self,
        user_id: str,
        repository: TaskRepository,
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], datetime] = get_jst_now,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.user_id = user_id
        self.repository = repository
        self.settings = settings or load_settings()
        self.clock = clock
        self.state = ConversationState()
        self._lock = asyncio.Lock()
        self._generation = 0

    def start(self) -> ConversationState:
        self.state = ConversationState(phase="collecting")
        self._generation += 1
        logger.info("Conversation %s started", self.id)
        return self.state

    def reset(self) -> ConversationState:
        """Back to an empty initial state; a turn still waiting on the LLM is discarded."""
        self.state = ConversationState()
        self._generation += 1
        return self.state

    async def send_message(self, text: str, config: Optional[LlmConfig] = None) -> TurnResult:
        """Process one user turn. Turns of the same session never overlap."""
        async with self._lock:
            return await self._handle_turn(text, config)

    async def _handle_turn(self, text: str, config: Optional[LlmConfig]) -> TurnResult:
        text = (text or "").strip()
        if not text:
            raise create_error(ErrorCode.INVALID_INPUT, "Message is empty")
        if self.state.phase in ("completed", "cancelled"):
            raise create_error(ErrorCode.INVALID_INPUT, f"Conversation is already {self.state.phase}")
        if self.state.phase == "initial":
            self.start()

        new_messages = [self._record(_message("user", text))]

        if text == DECLINE:
            return self._cancel(new_messages)
        if text == CONFIRM:
            return self._register(new_messages, force=False)
        if text == REGISTER_ANYWAY:
            return self._register(new_messages, force=True)

        state = self.state
        before = state.current_task_info
        required_done_before = is_task_complete(before)
        is_first_turn = not state.context
        warning = None

        mapping = None
        if not is_first_turn:
            mapping = map_selection_to_field(
                text, state.current_field, before, state.resolved_fields, self.clock()
            )

        if mapping is not None and mapping.success:
            info = self._apply_mapping(before, mapping.field, mapping.value)
            if mapping.field not in state.resolved_fields:
                state.resolved_fields.append(mapping.field)
            context = state.context
        else:
            generation = self._generation
            result, warning = await llm_parser.extract_task(
                text,
                config,
                previous_context=state.context,
                current_task_info=before,
                current_field=state.current_field,
                settings=self.settings,
                now=self.clock(),
            )
            if generation != self._generation:
                logger.info("Conversation %s was reset during extraction; result discarded", self.id)
                return TurnResult(state=self.state, messages=new_messages)
            if warning is not None and not is_first_turn:
                # Keep what was collected rather than the raw-text fallback record
                info = before
                if state.current_field == TaskField.TITLE.value:
                    title = extract_title_from_input(text)
                    if title:
                        info = apply_patch(before, TaskField.TITLE.value, title)
            else:
                info = result.task_info
            context = result.conversation_context or state.context

        state.current_task_info = info
        state.context = context
        new_messages.extend(self._ask_next(info, is_initial=not required_done_before))
        return TurnResult(state=state, messages=new_messages, warning=warning)

    def _apply_mapping(self, info: TaskInfo, field_name: str, value) -> TaskInfo:
        info = apply_patch(info, field_name, value)
        # A bare clock time with no date means tomorrow
        if field_name == TaskField.SCHEDULED_TIME.value and value and not info.scheduled_date:
            tomorrow = format_date(self.clock() + timedelta(days=1))
            info = apply_patch(info, TaskField.SCHEDULED_DATE.value, tomorrow)
        return info

    def _ask(self, info: TaskInfo, question: dict) -> list[ChatMessage]:
        self.state.phase = "collecting"
        self.state.current_field = question["field"]
        return [self._record(_message(
            "assistant",
            question["question"],
            "question",
            task_info=info,
            options=question["options"],
        ))]

    def _ask_next(self, info: TaskInfo, is_initial: bool) -> list[ChatMessage]:
        state = self.state
        question = generate_next_question(info, is_initial, state.resolved_fields)
        if question["field"]:
            return self._ask(info, question)

        if state.phase != "confirming":
            logger.info("Conversation %s: collecting -> confirming", self.id)
        state.phase = "confirming"
        state.current_field = None
        return [self._record(_message(
            "assistant",
            CONFIRM_QUESTION,
            "confirmation",
            task_info=info,
            options=list(CONFIRM_OPTIONS),
            is_complete=is_task_complete(info),
        ))]

    def _cancel(self, new_messages: list[ChatMessage]) -> TurnResult:
        logger.info("Conversation %s: %s -> cancelled", self.id, self.state.phase)
        self.state.phase = "cancelled"
        self._clear()
        new_messages.append(self._record(_message("system", CANCELLED_MESSAGE, "cancelled")))
        return TurnResult(state=self.state, messages=new_messages)

    def _register(self, new_messages: list[ChatMessage], force: bool) -> TurnResult:
        state = self.state
        info = state.current_task_info

        if force:
            # Any non-blank title will do, placeholders included
            valid = bool(info.title and info.title.strip()) and info.category is not None
            reason = TITLE_AND_CATEGORY_REQUIRED
        else:
            valid = is_task_complete(info)
            reason = INCOMPLETE_MESSAGE

        if not valid:
            error = create_error(ErrorCode.MISSING_REQUIRED_FIELD, "Task is not registrable")
            error.user_message = reason
            new_messages.append(self._record(_message("system", reason, "error")))
            if info.category is not None and info.title and not is_valid_title(info.title):
                # A placeholder title counts as filled for the slot scan, so ask for it explicitly
                new_messages.extend(self._ask(info, generate_field_question(TaskField.TITLE.value)))
            else:
                new_messages.extend(self._ask_next(info, is_initial=True))
            return TurnResult(state=state, messages=new_messages, error=error)

        try:
            task = self.repository.create(self.user_id, to_task_create(info, raw_input=self._raw_input()))
        except Exception as exc:
            # State is kept so the user can retry without re-entering anything
            error = handle_error(exc)
            logger.error("Conversation %s: registration failed: %s", self.id, error.message)
            new_messages.append(self._record(_message("system", REGISTER_FAILED_MESSAGE, "error")))
            return TurnResult(state=state, messages=new_messages, error=error)

        logger.info("Conversation %s: %s -> completed (task %s)", self.id, state.phase, task.id)
        new_messages.append(self._record(_message(
            "assistant", COMPLETE_MESSAGE, "complete", task_info=info, is_complete=True
        )))
        state.phase = "completed"
        self._clear()
        return TurnResult(state=state, messages=new_messages, task=task)

    def _raw_input(self) -> Optional[str]:
        for message in self.state.messages:
            if message.role == "user":
                return message.content
        return None

    def _clear(self) -> None:
        state = self.state
        state.current_task_info = TaskInfo()
        state.context = ""
        state.current_field = None
        state.resolved_fields = []

    def _record(self, message: ChatMessage) -> ChatMessage:
        self.state.messages.append(message)
        return message


class SessionStore:
    """In-memory sessions keyed by id, evicted after `ttl_seconds` of inactivity."""

    def __init__(self, ttl_seconds: int = 1800, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: dict[str, ConversationSession] = {}
        self._last_seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, user_id: str, repository: TaskRepository, settings: Optional[Settings] = None) -> ConversationSession:
        self.evict_expired()
        session = ConversationSession(user_id, repository, settings)
        session.start()
        self._sessions[session.id] = session
        self._last_seen[session.id] = self.clock()
        return session

    def get(self, session_id: str, user_id: str) -> ConversationSession:
        self.evict_expired()
        session = self._sessions.get(session_id)
        if session is None:
            raise create_error(ErrorCode.INVALID_INPUT, f"Unknown or expired conversation: {session_id}")
        if session.user_id != user_id:
            raise create_error(ErrorCode.FORBIDDEN, "Conversation belongs to another user")
        self._last_seen[session_id] = self.clock()
        return session

    def delete(self, session_id: str) -> bool:
        self._last_seen.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    def evict_expired(self) -> int:
        now = self.clock()
        expired = [sid for sid, seen in self._last_seen.items() if now - seen > self.ttl_seconds]
        for sid in expired:
            self.delete(sid)
        if expired:
            logger.info("Evicted %d expired conversation(s)", len(expired))
        return len(expired)
