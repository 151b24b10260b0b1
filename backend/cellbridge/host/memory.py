"""In-memory host that keeps outputs on the cell models."""
import logging
from typing import List

from ..models import Cell, CellOutput, CellStatus, OutputItem
from .base import CellEdit, CellExecutionTask, InsertCell, NotebookHost, ReplaceCellText

logger = logging.getLogger("cellbridge.host")


class MemoryExecutionTask(CellExecutionTask):

    def start(self, start_time=None) -> None:
        super().start(start_time)
        self.cell.status = CellStatus.RUNNING

    def end(self, success: bool, end_time=None) -> None:
        super().end(success, end_time)
        self.cell.status = CellStatus.SUCCESS if success else CellStatus.ERROR
        if self.execution_order is not None:
            self.cell.execution_order = self.execution_order

    async def clear_output(self) -> None:
        self.cell.outputs.clear()

    async def append_output(self, outputs: List[CellOutput]) -> None:
        self.cell.outputs.extend(outputs)

    async def replace_output(self, outputs: List[CellOutput]) -> None:
        self.cell.outputs[:] = outputs

    async def replace_output_items(self, items: List[OutputItem], output: CellOutput) -> None:
        # Display updates may target an output shown by another cell
        if not self._is_displayed(output):
            raise LookupError("Output is no longer displayed")
        output.items[:] = items

    def _is_displayed(self, output: CellOutput) -> bool:
        if any(existing is output for existing in self.cell.outputs):
            return True
        notebook = self.cell.notebook
        if notebook is None:
            return False
        return any(
            existing is output
            for cell in notebook.cells
            if not cell.closed
            for existing in cell.outputs
        )


class MemoryHost(NotebookHost):
    """Host backed by the ``Notebook``/``Cell`` dataclasses"""

    def __init__(self):
        self.executions: List[MemoryExecutionTask] = []

    def create_execution(self, cell: Cell) -> MemoryExecutionTask:
        task = MemoryExecutionTask(cell)
        self.executions.append(task)
        return task

    async def apply_edit(self, edit: CellEdit) -> bool:
        if isinstance(edit, ReplaceCellText):
            if edit.cell.closed:
                logger.warning("Cannot edit closed cell %s", edit.cell.id)
                return False
            edit.cell.code = edit.text
            return True

        if isinstance(edit, InsertCell):
            if edit.notebook.closed:
                logger.warning("Cannot insert into closed notebook %s", edit.notebook.id)
                return False
            edit.notebook.insert_cell(edit.index, edit.text, edit.language)
            return True

        raise TypeError(f"Unsupported edit: {type(edit).__name__}")
