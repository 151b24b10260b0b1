from .base import CellExecutionTask, NotebookHost, CellEdit, ReplaceCellText, InsertCell
from .memory import MemoryHost, MemoryExecutionTask

__all__ = [
    "CellExecutionTask", "NotebookHost", "CellEdit", "ReplaceCellText", "InsertCell",
    "MemoryHost", "MemoryExecutionTask"
]
