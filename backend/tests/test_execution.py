"""
Tests for CellExecution: kernel messages of one run applied to one cell.

Covers:
- Result, stream and error outputs, and success/failure of the run
- clear_output with and without wait
- Stream merging, carriage returns and cursor-up rewrites
- In-place display updates across cells
- set_next_input edits and pager text from execute_reply
- Handler faults, host failures, runtime failures and timeouts
"""
import asyncio
import json

import pytest

from cellbridge.core.codec import to_protocol_record
from cellbridge.core.execution import CellExecution
from cellbridge.core.stream import format_stream_text
from cellbridge.host import MemoryExecutionTask, MemoryHost
from cellbridge.kernel.types import MessageKind
from cellbridge.models import CellStatus, MimeType
from tests.test_utils import (
    ScriptedRuntime,
    cell_texts,
    clear_output,
    display_data,
    error,
    execute_reply,
    execute_result,
    message,
    stream,
    update_display_data,
)


async def run(host, cell, messages, reply=None, execution=None):
    """Execute ``cell`` on a runtime that replays ``messages``."""
    execution = execution or CellExecution()
    runtime = ScriptedRuntime(messages, reply, callback=execution.handle_message)
    return await execution.execute(host, runtime, cell)


def error_payload(output):
    assert output.mimes == [MimeType.ERROR.value]
    return json.loads(output.items[0].decode())


# ============================================================================
# Outputs and run status
# ============================================================================

@pytest.mark.asyncio
async def test_stream_and_result(host, cell):
    """print('hello'); 42 -> a stdout output then the result."""
    execution = CellExecution()
    ok = await run(host, cell, [
        stream("hello\n"),
        execute_result({"text/plain": "42"}, execution_count=1),
    ], execution=execution)

    assert ok is True
    assert execution.state == CellStatus.SUCCESS
    assert cell.status == CellStatus.SUCCESS
    assert cell.execution_order == 1
    assert cell_texts(cell) == ["hello\n", "42"]
    assert cell.outputs[0].mimes == [MimeType.STDOUT.value]
    assert cell.outputs[1].metadata.output_type == "execute_result"


@pytest.mark.asyncio
async def test_cell_is_running_while_messages_arrive(host, cell):
    statuses = []
    execution = CellExecution()

    async def callback(msg):
        statuses.append((cell.status, execution.state))
        await execution.handle_message(msg)

    runtime = ScriptedRuntime([stream("x")], callback=callback)
    await execution.execute(host, runtime, cell)

    assert statuses == [(CellStatus.RUNNING, CellStatus.RUNNING)]


@pytest.mark.asyncio
async def test_previous_outputs_are_cleared(host, cell):
    await run(host, cell, [stream("first run\n")])
    await run(host, cell, [stream("second run\n")])

    assert cell_texts(cell) == ["second run\n"]
    assert len(host.executions) == 2


@pytest.mark.asyncio
async def test_execution_order_from_result(host, cell):
    await run(host, cell, [execute_result({"text/plain": "1"}, execution_count=5)],
              reply={"status": "ok"})

    assert cell.execution_order == 5


@pytest.mark.asyncio
async def test_error_reply_without_error_message(host, cell):
    """A failed run always leaves something error-shaped on the cell."""
    execution = CellExecution()
    ok = await run(host, cell, [], reply={"status": "error", "execution_count": 2},
                   execution=execution)

    assert ok is False
    assert execution.state == CellStatus.ERROR
    assert cell.status == CellStatus.ERROR
    assert len(cell.outputs) == 1
    assert error_payload(cell.outputs[0])["name"] == "ExecutionError"


@pytest.mark.asyncio
async def test_error_reply_details_are_used(host, cell):
    await run(host, cell, [], reply={
        "status": "error", "ename": "NameError", "evalue": "name 'x' is not defined", "traceback": ["tb"],
    })

    payload = error_payload(cell.outputs[0])
    assert payload["name"] == "NameError"
    assert payload["message"] == "name 'x' is not defined"


@pytest.mark.asyncio
async def test_kernel_error_is_shown_once(host, cell):
    ok = await run(host, cell, [error(traceback=["tb 1", "tb 2"])], reply={"status": "error"})

    assert ok is False
    assert len(cell.outputs) == 1
    assert to_protocol_record(cell.outputs[0])["traceback"] == ["tb 1", "tb 2"]


@pytest.mark.asyncio
async def test_unknown_message_kind_is_ignored(host, cell):
    ok = await run(host, cell, [message("status", execution_state="busy"), stream("x")])

    assert ok is True
    assert cell_texts(cell) == ["x"]


def test_every_message_kind_has_a_handler():
    execution = CellExecution()
    assert set(execution._handlers) == set(MessageKind)


# ============================================================================
# clear_output
# ============================================================================

@pytest.mark.asyncio
async def test_clear_output_immediately(host, cell):
    await run(host, cell, [stream("a\n"), clear_output(), display_data({"text/plain": "x"})])

    assert cell_texts(cell) == ["x"]


@pytest.mark.asyncio
async def test_clear_output_wait_defers_until_next_output(host, cell):
    await run(host, cell, [stream("a\n"), clear_output(wait=True), stream("b\n")])

    assert cell_texts(cell) == ["b\n"]


@pytest.mark.asyncio
async def test_clear_output_wait_without_further_output(host, cell):
    await run(host, cell, [stream("a\n"), clear_output(wait=True)])

    assert cell_texts(cell) == ["a\n"]


@pytest.mark.asyncio
async def test_clear_output_wait_before_display(host, cell):
    await run(host, cell, [
        display_data({"text/plain": "frame 1"}),
        clear_output(wait=True),
        display_data({"text/plain": "frame 2"}),
    ])

    assert cell_texts(cell) == ["frame 2"]


# ============================================================================
# Streams
# ============================================================================

@pytest.mark.asyncio
async def test_stream_chunks_merge_into_one_output(host, cell):
    await run(host, cell, [stream("a"), stream("b\n"), stream(["c", "d\n"])])

    assert cell_texts(cell) == ["ab\nc\nd\n"]


@pytest.mark.asyncio
async def test_crlf_split_across_chunks(host, cell):
    await run(host, cell, [stream("abc\r"), stream("\ndef")])

    assert cell_texts(cell) == ["abc\ndef"]


@pytest.mark.asyncio
@pytest.mark.parametrize("chunks", [
    ["abc\r", "\ndef"],
    ["50%\r", "\r\n", "done\n"],
    ["ab\b", "c"],
    ["x\r", "\by"],
    ["loading", "\b\b\b\bed\r", "\nok\r", "\n"],
    ["step 1", "\rstep 2\r", "\nstep 3\b", "\b4\n"],
])
async def test_chunked_stream_matches_whole_text(host, cell, chunks):
    """Splitting a stream into messages never changes what is shown."""
    await run(host, cell, [stream(chunk) for chunk in chunks])

    assert cell_texts(cell) == [format_stream_text("".join(chunks))]


@pytest.mark.asyncio
async def test_progress_bar_collapses(host, cell):
    await run(host, cell, [stream("10%"), stream("\r20%"), stream("\r30%\n")])

    assert cell_texts(cell) == ["30%\n"]


@pytest.mark.asyncio
async def test_backspace_across_chunks(host, cell):
    await run(host, cell, [stream("abc"), stream("\b\bx")])

    assert cell_texts(cell) == ["ax"]


@pytest.mark.asyncio
async def test_cursor_up_rewrites_previous_line(host, cell):
    await run(host, cell, [stream("header\nstep 1\n"), stream("\x1b[A\rstep 2\n")])

    assert cell_texts(cell) == ["header\nstep 2\n"]


@pytest.mark.asyncio
async def test_multi_line_cursor_up_is_left_as_text(host, cell):
    await run(host, cell, [stream("a\n"), stream("\x1b[2Ab")])

    assert cell_texts(cell) == ["a\n\x1b[2Ab"]


@pytest.mark.asyncio
async def test_channel_switch_starts_new_output(host, cell):
    await run(host, cell, [
        stream("out\n"),
        stream("err\n", name="stderr"),
        stream("more\n"),
    ])

    assert cell_texts(cell) == ["out\n", "err\n", "more\n"]
    assert [output.mimes[0] for output in cell.outputs] == [
        MimeType.STDOUT.value, MimeType.STDERR.value, MimeType.STDOUT.value,
    ]


@pytest.mark.asyncio
async def test_display_between_streams_starts_new_output(host, cell):
    await run(host, cell, [stream("a"), display_data({"text/plain": "x"}), stream("b")])

    assert cell_texts(cell) == ["a", "x", "b"]


# ============================================================================
# Display updates
# ============================================================================

@pytest.mark.asyncio
async def test_update_display_in_same_cell(host, cell):
    await run(host, cell, [
        display_data({"text/plain": "v1"}, display_id="d1"),
        update_display_data({"text/plain": "v2"}, display_id="d1"),
    ])

    assert cell_texts(cell) == ["v2"]
    assert cell.outputs[0].metadata.output_type == "display_data"


@pytest.mark.asyncio
async def test_update_display_from_another_cell(host, notebook):
    first, second = notebook.cells
    await run(host, first, [display_data({"text/plain": "v1"}, display_id="d1")])
    await run(host, second, [update_display_data({"text/plain": "v2", "text/html": "<b>v2</b>"}, display_id="d1")])

    assert second.outputs == []
    assert first.outputs[0].mimes == ["text/html", "text/plain"]
    assert first.outputs[0].items[1].decode() == "v2"


@pytest.mark.asyncio
async def test_execute_result_can_be_updated(host, cell):
    await run(host, cell, [
        execute_result({"text/plain": "v1"}, display_id="d1"),
        update_display_data({"text/plain": "v2"}, display_id="d1"),
    ])

    assert cell_texts(cell) == ["v2"]


@pytest.mark.asyncio
async def test_update_for_closed_cell_is_dropped(host, notebook):
    first, second = notebook.cells
    await run(host, first, [display_data({"text/plain": "v1"}, display_id="d1")])
    notebook.remove_cell(first)

    ok = await run(host, second, [update_display_data({"text/plain": "v2"}, display_id="d1")])

    assert ok is True
    assert cell_texts(first) == ["v1"]
    assert second.outputs == []


@pytest.mark.asyncio
async def test_update_for_unknown_display_is_dropped(host, cell):
    ok = await run(host, cell, [update_display_data({"text/plain": "v2"}, display_id="nope")])

    assert ok is True
    assert cell.outputs == []


# ============================================================================
# execute_reply payloads
# ============================================================================

@pytest.mark.asyncio
async def test_set_next_input_replaces_cell_text(host, cell):
    await run(host, cell, [execute_reply(payload=[
        {"source": "set_next_input", "text": "new code", "replace": True},
    ])])

    assert cell.code == "new code"


@pytest.mark.asyncio
async def test_set_next_input_inserts_cell_below(host, notebook, cell):
    await run(host, cell, [execute_reply(payload=[
        {"source": "set_next_input", "text": "new code", "replace": False},
    ])])

    assert len(notebook.cells) == 3
    assert notebook.cells[0] is cell
    assert notebook.cells[1].code == "new code"
    assert notebook.cells[1].language == "python"
    assert cell.code == "print('hello')"


@pytest.mark.asyncio
async def test_pager_text_shown_as_stdout(host, cell):
    await run(host, cell, [execute_reply(payload=[
        {"source": "page", "data": {"text/plain": "Docstring:\nPrint things."}, "start": 0},
    ])])

    assert cell_texts(cell) == ["Docstring:\nPrint things."]
    assert cell.outputs[0].mimes == [MimeType.STDOUT.value]


# ============================================================================
# Failures
# ============================================================================

@pytest.mark.asyncio
async def test_malformed_message_fails_the_run(host, cell):
    """A message the controller cannot apply becomes an error output."""
    execution = CellExecution()
    ok = await run(host, cell, [message("stream", name="stdout")], execution=execution)

    assert ok is False
    assert execution.state == CellStatus.ERROR
    assert cell.status == CellStatus.ERROR
    assert error_payload(cell.outputs[0])["name"] == "ValidationError"
    assert host.executions[0].success is False


@pytest.mark.asyncio
async def test_message_without_header_fails_the_run(host, cell):
    ok = await run(host, cell, [{"content": {"name": "stdout", "text": "x"}}])

    assert ok is False
    assert len(cell.outputs) == 1


@pytest.mark.asyncio
async def test_messages_after_finish_are_ignored(host, cell):
    execution = CellExecution()
    await run(host, cell, [stream("done\n")], execution=execution)

    await execution.handle_message(stream("late\n"))

    assert cell_texts(cell) == ["done\n"]
    assert execution.cell is None


class FailingTask(MemoryExecutionTask):
    async def append_output(self, outputs):
        raise RuntimeError("output pane closed")


class FailingHost(MemoryHost):
    def create_execution(self, cell):
        task = FailingTask(cell)
        self.executions.append(task)
        return task


@pytest.mark.asyncio
async def test_host_failures_do_not_fail_the_run(cell):
    ok = await run(FailingHost(), cell, [stream("x"), display_data({"text/plain": "y"})])

    assert ok is True
    assert cell.outputs == []
    assert cell.status == CellStatus.SUCCESS


@pytest.mark.asyncio
async def test_runtime_failure_is_reraised(host, cell):
    execution = CellExecution()
    with pytest.raises(RuntimeError, match="kernel died"):
        await run(host, cell, [], reply=RuntimeError("kernel died"), execution=execution)

    assert execution.state == CellStatus.ERROR
    assert cell.status == CellStatus.ERROR
    assert error_payload(cell.outputs[0])["message"] == "kernel died"


@pytest.mark.asyncio
async def test_runtime_failure_after_kernel_error(host, cell):
    with pytest.raises(RuntimeError):
        await run(host, cell, [error()], reply=RuntimeError("kernel died"))

    assert len(cell.outputs) == 1
    assert error_payload(cell.outputs[0])["name"] == "ValueError"


class HangingRuntime:
    async def ready(self):
        pass

    async def execute_request(self, code):
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_timeout_fails_the_run(host, cell):
    execution = CellExecution()
    with pytest.raises(asyncio.TimeoutError):
        await execution.execute(host, HangingRuntime(), cell, timeout=0.01)

    assert execution.state == CellStatus.ERROR
    assert cell.status == CellStatus.ERROR
    assert error_payload(cell.outputs[0])["name"] == "TimeoutError"
