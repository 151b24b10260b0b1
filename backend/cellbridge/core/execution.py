"""
Cell execution: turns the kernel message stream of one run into cell outputs.

One ``CellExecution`` drives one run of one cell. Messages are handled one
at a time in arrival order. Host mutations are awaited in that order and
their failures are only logged.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..host import CellExecutionTask, InsertCell, NotebookHost, ReplaceCellText
from ..kernel.types import (
    ClearOutputContent,
    DisplayDataContent,
    ErrorContent,
    ExecuteReply,
    ExecuteResultContent,
    KernelMessage,
    KernelRuntime,
    MessageKind,
    SetNextInputPayload,
    StreamContent,
)
from ..models import Cell, CellOutput, CellStatus
from .codec import ProtocolRecord, create_error_output, to_renderable
from .config import settings
from .display import resolve_output, track_output
from .stream import concat_multiline_string

logger = logging.getLogger("cellbridge.execution")

# Only the single-line form is recognised; `ESC[2A` and up are left as text
CURSOR_UP = "\x1b[A"

_LINE_BREAK = re.compile(r"\r?\n")


@dataclass
class StreamState:
    """The stream output still open for appending; ``text`` is unformatted."""
    name: str
    text: str
    output: CellOutput


class CellExecution:
    """
    Execution state machine for a single cell run.

    Idle -> Running -> Success | Error. ``execute`` attaches the cell;
    ``handle_message`` is a no-op while no cell is attached.
    """

    def __init__(self):
        self.host: Optional[NotebookHost] = None
        self.cell: Optional[Cell] = None
        self.task: Optional[CellExecutionTask] = None
        self.state = CellStatus.IDLE
        self.pending_clear = False
        self.last_stream: Optional[StreamState] = None
        self._error_shown = False

        self._handlers: Dict[MessageKind, Callable[[KernelMessage], Awaitable[None]]] = {
            MessageKind.EXECUTE_RESULT: self._handle_execute_result,
            MessageKind.STREAM: self._handle_stream,
            MessageKind.DISPLAY_DATA: self._handle_display_data,
            MessageKind.UPDATE_DISPLAY_DATA: self._handle_update_display_data,
            MessageKind.CLEAR_OUTPUT: self._handle_clear_output,
            MessageKind.ERROR: self._handle_error,
            MessageKind.EXECUTE_REPLY: self._handle_execute_reply,
        }

    async def execute(
        self,
        host: NotebookHost,
        runtime: KernelRuntime,
        cell: Cell,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Run ``cell`` on ``runtime`` and return whether it succeeded.

        Runtime failures and timeouts end the run as failed, leave an error
        output on the cell and are re-raised.
        """
        task = host.create_execution(cell)
        self.host = host
        self.cell = cell
        self.task = task
        self._reset()
        self._error_shown = False
        self.state = CellStatus.RUNNING

        task.start(time.time())
        await self._best_effort(task.clear_output(), "clear_output")

        success = False
        try:
            reply = await self._request(runtime, cell.code, timeout)
            success = reply.status == "ok"
            self._set_execution_order(reply.execution_count)
            if not success and not self._error_shown:
                await self._append(self._reply_error(reply))
        except Exception as e:
            logger.warning("Execution of cell %s failed: %s", cell.id, e)
            if not self._error_shown:
                await self._append(create_error_output(e))
            raise
        finally:
            self._finish(success)

        return self.state is CellStatus.SUCCESS

    async def handle_message(self, msg: Union[KernelMessage, Dict[str, Any]]) -> None:
        """Apply one kernel message to the attached cell."""
        if self.cell is None:
            return

        msg_type = None
        try:
            if not isinstance(msg, KernelMessage):
                msg = KernelMessage.model_validate(msg)
            msg_type = msg.msg_type
            if settings.DEBUG:
                logger.debug("Cell %s received %s", self.cell.id, msg_type)

            handler = self._handlers.get(msg.kind)
            if handler is not None:
                await handler(msg)
            else:
                logger.debug("Ignoring %s message for cell %s", msg_type, self.cell.id)

            # Every kind may carry the kernel's execution counter
            self._set_execution_order(msg.content.get("execution_count"))
        except Exception as e:
            logger.exception("Failed to handle %s message", msg_type or "malformed")
            await self._completed_with_errors(e)

    # Handlers

    async def _handle_execute_result(self, msg: KernelMessage) -> None:
        content = ExecuteResultContent.model_validate(msg.content)
        await self._add_to_cell_data({
            "output_type": "execute_result",
            "data": content.data,
            "metadata": content.metadata,
            "transient": content.transient,
            "execution_count": content.execution_count,
        })

    async def _handle_display_data(self, msg: KernelMessage) -> None:
        content = DisplayDataContent.model_validate(msg.content)
        await self._add_to_cell_data({
            "output_type": "display_data",
            "data": content.data,
            "metadata": content.metadata,
            "transient": content.transient,
        })

    async def _handle_update_display_data(self, msg: KernelMessage) -> None:
        content = DisplayDataContent.model_validate(msg.content)
        display_id = content.display_id
        if display_id is None or self.cell.notebook is None:
            return

        target = resolve_output(self.cell.notebook, display_id)
        if target is None:
            # The display may have been cleared or its cell closed
            logger.debug("No output for display %s; update dropped", display_id)
            return

        update = to_renderable({
            "output_type": "update_display_data",
            "data": content.data,
            "metadata": content.metadata,
            "transient": content.transient,
        })
        await self._best_effort(
            self.task.replace_output_items(update.items, target), "replace_output_items"
        )

    async def _handle_clear_output(self, msg: KernelMessage) -> None:
        content = ClearOutputContent.model_validate(msg.content)
        if content.wait:
            # Deferred until the next output arrives
            self.pending_clear = True
        else:
            await self._clear_output()

    async def _handle_error(self, msg: KernelMessage) -> None:
        content = ErrorContent.model_validate(msg.content)
        self._error_shown = True
        await self._add_to_cell_data({
            "output_type": "error",
            "ename": content.ename,
            "evalue": content.evalue,
            "traceback": content.traceback,
        })

    async def _handle_execute_reply(self, msg: KernelMessage) -> None:
        reply = ExecuteReply.model_validate(msg.content)
        for entry in reply.payload:
            if entry.get("source") == "set_next_input" and "text" in entry and "replace" in entry:
                await self._set_next_input(SetNextInputPayload.model_validate(entry))

            data = entry.get("data")
            if isinstance(data, dict) and "text/plain" in data:
                # Pagers and magics report text this way; it may hold ANSI codes
                value = data["text/plain"]
                text = concat_multiline_string(value) if isinstance(value, list) else str(value)
                await self._append_stream("stdout", text)

    async def _handle_stream(self, msg: KernelMessage) -> None:
        content = StreamContent.model_validate(msg.content)
        await self._append_stream(content.name, concat_multiline_string(content.text))

    # Output paths

    async def _append_stream(self, name: str, text: str) -> None:
        if self.pending_clear:
            await self._clear_output()

        last = self.last_stream
        if last is not None and last.name == name:
            existing = last.text
            if text.startswith(CURSOR_UP):
                # The previous line is about to be redrawn
                lines = _LINE_BREAK.split(existing)
                if lines:
                    lines.pop()
                existing = "\n".join(lines)
                text = text[len(CURSOR_UP):]

            # Raw text is kept; a chunk may end halfway through `\r\n`
            last.text = existing + text
            output = to_renderable({"output_type": "stream", "name": name, "text": last.text})
            await self._best_effort(
                self.task.replace_output_items(output.items, last.output), "replace_output_items"
            )
            return

        output = to_renderable({"output_type": "stream", "name": name, "text": text})
        self.last_stream = StreamState(name=name, text=text, output=output)
        await self._best_effort(self.task.append_output([output]), "append_output")

    async def _add_to_cell_data(self, record: ProtocolRecord) -> None:
        output = to_renderable(record)
        if self.cell.closed:
            return

        if self.pending_clear:
            await self._clear_output()

        self.last_stream = None
        await self._best_effort(self.task.append_output([output]), "append_output")

        display_id = (record.get("transient") or {}).get("display_id")
        if isinstance(display_id, str):
            track_output(self.cell, display_id, output)

    async def _clear_output(self) -> None:
        self.last_stream = None
        self.pending_clear = False
        await self._best_effort(self.task.clear_output(), "clear_output")

    async def _append(self, record: ProtocolRecord) -> None:
        self._error_shown = True
        await self._best_effort(self.task.append_output([to_renderable(record)]), "append_output")

    async def _set_next_input(self, payload: SetNextInputPayload) -> None:
        cell = self.cell
        if payload.replace:
            edit = ReplaceCellText(cell=cell, text=payload.text)
        elif cell.notebook is not None:
            edit = InsertCell(
                notebook=cell.notebook,
                index=cell.index + 1,
                text=payload.text,
                language=cell.language,
            )
        else:
            logger.debug("Cell %s has no notebook; set_next_input dropped", cell.id)
            return
        await self._best_effort(self.host.apply_edit(edit), "apply_edit")

    async def _completed_with_errors(self, error: BaseException) -> None:
        if self.task is None:
            return
        await self._append(create_error_output(error))
        self.state = CellStatus.ERROR
        if not self.task.ended:
            self.task.end(False, time.time())

    # Lifecycle helpers

    async def _request(self, runtime: KernelRuntime, code: str, timeout: Optional[float]) -> ExecuteReply:
        if timeout is None:
            timeout = settings.execute_timeout
        request = runtime.execute_request(code)
        if timeout:
            reply = await asyncio.wait_for(request, timeout)
        else:
            reply = await request
        if not isinstance(reply, ExecuteReply):
            reply = ExecuteReply.model_validate(reply)
        return reply

    @staticmethod
    def _reply_error(reply: ExecuteReply) -> ProtocolRecord:
        return {
            "output_type": "error",
            "ename": reply.ename or "ExecutionError",
            "evalue": reply.evalue or f"Execution finished with status '{reply.status}'",
            "traceback": reply.traceback or [],
        }

    def _set_execution_order(self, count: Any) -> None:
        if self.task is None:
            return
        if isinstance(count, int) and not isinstance(count, bool):
            self.task.execution_order = count

    def _finish(self, success: bool) -> None:
        task = self.task
        if self.state is CellStatus.ERROR:
            success = False
        self.state = CellStatus.SUCCESS if success else CellStatus.ERROR
        if task is not None and not task.ended:
            task.end(success, time.time())

        # Late messages must not touch this cell any more
        self._reset()
        self.cell = None
        self.task = None
        self.host = None

    def _reset(self) -> None:
        self.pending_clear = False
        self.last_stream = None

    @staticmethod
    async def _best_effort(operation: Awaitable[Any], name: str) -> bool:
        try:
            await operation
            return True
        except Exception as e:
            logger.warning("Host %s failed: %s", name, e)
            return False
