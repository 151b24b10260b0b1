"""Type definitions for kernel protocol messages."""
from typing import Literal, Optional, Any, Protocol, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

StreamName = Literal["stdout", "stderr"]
ReplyStatus = Literal["ok", "error", "abort", "aborted"]


class MessageKind(str, Enum):
    """Message types the cell execution reacts to."""
    EXECUTE_RESULT = "execute_result"
    STREAM = "stream"
    DISPLAY_DATA = "display_data"
    UPDATE_DISPLAY_DATA = "update_display_data"
    CLEAR_OUTPUT = "clear_output"
    ERROR = "error"
    EXECUTE_REPLY = "execute_reply"


class MessageHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    msg_type: str
    msg_id: str = ""
    session: str = ""


class KernelMessage(BaseModel):
    """
    Envelope for every message delivered by the kernel.
    Content is validated per kind by the handler that consumes it.
    """
    model_config = ConfigDict(extra="allow")

    header: MessageHeader
    parent_header: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    content: dict[str, Any] = Field(default_factory=dict)

    @property
    def msg_type(self) -> str:
        return self.header.msg_type

    @property
    def kind(self) -> Optional[MessageKind]:
        try:
            return MessageKind(self.header.msg_type)
        except ValueError:
            return None

    @classmethod
    def create(cls, msg_type: str, content: dict[str, Any]) -> "KernelMessage":
        return cls(header=MessageHeader(msg_type=msg_type), content=content)


class StreamContent(BaseModel):
    name: StreamName
    text: str | list[str]


class DisplayDataContent(BaseModel):
    """Content of display_data and update_display_data."""
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    transient: Optional[dict[str, Any]] = None

    @property
    def display_id(self) -> Optional[str]:
        if not self.transient:
            return None
        display_id = self.transient.get("display_id")
        return display_id if isinstance(display_id, str) else None


class ExecuteResultContent(DisplayDataContent):
    execution_count: Optional[int] = None


class ClearOutputContent(BaseModel):
    wait: bool = False


class ErrorContent(BaseModel):
    ename: str = ""
    evalue: str = ""
    traceback: list[str] = Field(default_factory=list)


class ExecuteReply(BaseModel):
    """
    Reply to an execute request, returned by the runtime and also
    delivered as an execute_reply message.
    """
    model_config = ConfigDict(extra="allow")

    status: ReplyStatus = "ok"
    execution_count: Optional[int] = None
    payload: list[dict[str, Any]] = Field(default_factory=list)
    ename: Optional[str] = None
    evalue: Optional[str] = None
    traceback: Optional[list[str]] = None


class SetNextInputPayload(BaseModel):
    """Reply payload asking the frontend to put text in (or after) the cell."""
    source: Literal["set_next_input"] = "set_next_input"
    text: str
    replace: bool = False


class KernelRuntime(Protocol):
    """
    An interpreter reachable through execute requests.

    Output arrives out of band: the runtime invokes the callback it was
    given for every iopub/shell message of the request.
    """

    async def ready(self) -> None:
        ...

    async def execute_request(self, code: str) -> Union[ExecuteReply, dict[str, Any]]:
        ...
