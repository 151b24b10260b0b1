"""Kernel manager: readiness gate and message routing to cell executions."""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from ..core.config import settings
from ..core.execution import CellExecution
from ..host import NotebookHost
from ..models import Cell
from .types import ExecuteReply, KernelMessage, KernelRuntime

logger = logging.getLogger("cellbridge.kernel")


class KernelNotReadyError(RuntimeError):
    """The kernel did not become ready in time."""


class KernelManager:
    """
    Routes kernel messages to the cell execution in flight.

    Messages are queued as they arrive and applied one at a time, so
    outputs reach the host in arrival order even when the runtime calls
    back from a tight loop.
    """

    def __init__(self, runtime: KernelRuntime, host: NotebookHost):
        self.runtime = runtime
        self.host = host
        self.execution: Optional[CellExecution] = None
        self._ready = False
        self._inbox: Optional[asyncio.Queue] = None
        self._pump: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """Block until the runtime reports ready."""
        if self._ready:
            return
        if timeout is None:
            timeout = settings.ready_timeout
        try:
            if timeout:
                await asyncio.wait_for(self.runtime.ready(), timeout)
            else:
                await self.runtime.ready()
        except asyncio.TimeoutError as e:
            raise KernelNotReadyError(f"Kernel not ready after {timeout}s") from e
        except Exception as e:
            raise KernelNotReadyError(f"Kernel failed to start: {e}") from e

        self._ready = True
        logger.info("Kernel ready")

    async def ready(self) -> None:
        await self.wait_ready()

    def on_message(self, msg: Union[KernelMessage, Dict[str, Any]]) -> None:
        """Runtime callback; must be called from the event loop thread."""
        self._ensure_pump()
        self._inbox.put_nowait(msg)

    async def execute_request(self, code: str) -> Union[ExecuteReply, Dict[str, Any]]:
        """Forward to the runtime, then wait until queued output is applied."""
        reply = await self.runtime.execute_request(code)
        if self._inbox is not None:
            await self._inbox.join()
        return reply

    async def execute_cell(self, cell: Cell) -> bool:
        execution = CellExecution()
        self.execution = execution
        try:
            return await execution.execute(self.host, self, cell)
        finally:
            self.execution = None

    async def execute_cells(self, cells: List[Cell]) -> List[bool]:
        """
        Run cells in order after the readiness gate.

        A failed or timed-out cell is reported as False and the next cell
        still runs.
        """
        await self.wait_ready()

        results = []
        for cell in cells:
            try:
                results.append(await self.execute_cell(cell))
            except Exception as e:
                logger.warning("Cell %s did not complete: %s", cell.id, e)
                results.append(False)
        return results

    async def shutdown(self) -> None:
        """Stop routing messages."""
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
        self._pump = None
        self._inbox = None
        logger.info("Kernel manager stopped")

    def _ensure_pump(self) -> None:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        if self._pump is None or self._pump.done():
            self._pump = asyncio.get_running_loop().create_task(self._process_inbox())

    async def _process_inbox(self) -> None:
        while True:
            msg = await self._inbox.get()
            try:
                if self.execution is not None:
                    await self.execution.handle_message(msg)
                else:
                    logger.debug("No cell executing; message dropped")
            finally:
                self._inbox.task_done()
