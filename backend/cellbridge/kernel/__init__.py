from .types import (
    MessageKind, KernelMessage, MessageHeader,
    StreamContent, DisplayDataContent, ExecuteResultContent,
    ClearOutputContent, ErrorContent, ExecuteReply, SetNextInputPayload,
    KernelRuntime
)

__all__ = [
    "MessageKind", "KernelMessage", "MessageHeader",
    "StreamContent", "DisplayDataContent", "ExecuteResultContent",
    "ClearOutputContent", "ErrorContent", "ExecuteReply", "SetNextInputPayload",
    "KernelRuntime"
]
