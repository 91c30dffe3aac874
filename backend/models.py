from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Literal, Optional, Union

Category = Literal["shopping", "reply", "work", "personal", "other"]
TaskStatus = Literal["inbox", "scheduled", "done", "archived"]
Phase = Literal["initial", "collecting", "confirming", "completed", "cancelled"]
MessageType = Literal["initial", "question", "confirmation", "complete", "cancelled", "error"]


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskInfo(CamelModel):
    title: Optional[str] = None
    category: Optional[Category] = None
    deadline: Optional[str] = None  # YYYY-MM-DDT23:59:00+09:00
    scheduled_date: Optional[str] = None  # YYYY-MM-DD
    scheduled_time: Optional[str] = None  # HH:MM or morning/noon/afternoon/evening; None = inbox
    duration_minutes: Optional[int] = None


class ParseResult(CamelModel):
    task_info: TaskInfo
    missing_fields: list[str] = Field(default_factory=list)
    next_question: Optional[str] = None
    clarification_options: list[str] = Field(default_factory=list)
    is_complete: bool = False
    raw_input: str
    conversation_context: str = ""


class FieldMappingResult(CamelModel):
    success: bool
    field: Optional[str] = None
    value: Optional[Union[int, str]] = None
    next_field: Optional[str] = None
    action: Optional[Literal["cancel", "register_anyway"]] = None


class LlmConfig(CamelModel):
    provider: Literal["openai", "openrouter", "anthropic"] = "openai"
    model: Optional[str] = None
    api_key: Optional[str] = None


class ChatMessage(CamelModel):
    id: str
    role: Literal["user", "assistant", "system"]
    content: str
    type: Optional[MessageType] = None
    task_info: Optional[TaskInfo] = None
    options: list[str] = Field(default_factory=list)
    is_complete: Optional[bool] = None


class ConversationState(CamelModel):
    phase: Phase = "initial"
    current_task_info: TaskInfo = Field(default_factory=TaskInfo)
    context: str = ""
    current_field: Optional[str] = None
    resolved_fields: list[str] = Field(default_factory=list)  # answered or skipped slots
    messages: list[ChatMessage] = Field(default_factory=list)


class Task(CamelModel):
    id: str
    user_id: str
    title: str
    category: Category
    deadline: Optional[str] = None
    scheduled_at: Optional[str] = None  # ISO8601 with +09:00
    duration_minutes: Optional[int] = None
    status: TaskStatus = "inbox"
    completed_at: Optional[str] = None
    raw_input: Optional[str] = None
    created_at: str
    updated_at: str


class TaskCreate(CamelModel):
    title: str
    category: Category = "other"
    deadline: Optional[str] = None
    scheduled_at: Optional[str] = None
    duration_minutes: Optional[int] = None
    raw_input: Optional[str] = None


class TaskStatusUpdate(CamelModel):
    status: TaskStatus


class TaskSchedule(CamelModel):
    scheduled_at: str


class ParseTaskRequest(CamelModel):
    input: str = ""
    llm_config: Optional[LlmConfig] = None
    previous_context: str = ""
    current_task_info: TaskInfo = Field(default_factory=TaskInfo)
    current_field: Optional[str] = None


class MessageRequest(CamelModel):
    content: str
    llm_config: Optional[LlmConfig] = None
