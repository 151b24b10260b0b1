import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Union

from ..models import Cell, CellOutput, Notebook, OutputItem


@dataclass
class ReplaceCellText:
    """Replace the whole source of ``cell`` with ``text``"""
    cell: Cell
    text: str


@dataclass
class InsertCell:
    """Insert a new code cell at ``index`` in ``notebook``"""
    notebook: Notebook
    index: int
    text: str
    language: str = "python"


CellEdit = Union[ReplaceCellText, InsertCell]


class CellExecutionTask(ABC):
    """
    Host-side record of one cell execution.

    Output mutations are coroutines; callers treat them as best-effort.
    """

    def __init__(self, cell: Cell):
        self.cell = cell
        self.execution_order: Optional[int] = None
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.success: Optional[bool] = None

    @property
    def ended(self) -> bool:
        return self.end_time is not None

    def start(self, start_time: Optional[float] = None) -> None:
        self.start_time = start_time if start_time is not None else time.time()

    def end(self, success: bool, end_time: Optional[float] = None) -> None:
        self.success = success
        self.end_time = end_time if end_time is not None else time.time()

    @abstractmethod
    async def clear_output(self) -> None:
        """Remove every output of the cell"""
        pass

    @abstractmethod
    async def append_output(self, outputs: List[CellOutput]) -> None:
        """Add outputs after the existing ones"""
        pass

    @abstractmethod
    async def replace_output(self, outputs: List[CellOutput]) -> None:
        """Replace all outputs of the cell"""
        pass

    @abstractmethod
    async def replace_output_items(self, items: List[OutputItem], output: CellOutput) -> None:
        """Swap the items of an output that is already displayed"""
        pass


class NotebookHost(ABC):
    """Abstract notebook UI that owns cells and displays their outputs"""

    @abstractmethod
    def create_execution(self, cell: Cell) -> CellExecutionTask:
        """Create the execution record for a run of ``cell``"""
        pass

    @abstractmethod
    async def apply_edit(self, edit: CellEdit) -> bool:
        """Apply a cell text edit; returns whether the host accepted it"""
        pass
