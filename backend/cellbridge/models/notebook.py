from dataclasses import dataclass, field
from typing import List, Optional
from uuid import uuid4

from ..core.display import DisplayIdTracker
from .cell import Cell


@dataclass(eq=False)
class Notebook:
    """
    An open notebook document.

    The display-id index lives and dies with the notebook, so outputs from
    one notebook can never be updated through another.
    """
    id: str
    cells: List[Cell] = field(default_factory=list)
    display_ids: DisplayIdTracker = field(default_factory=DisplayIdTracker, repr=False)
    closed: bool = False

    def insert_cell(self, index: int, code: str = "", language: str = "python",
                    cell_id: Optional[str] = None) -> Cell:
        cell = Cell(id=cell_id or str(uuid4()), code=code, language=language, notebook=self)
        index = max(0, min(index, len(self.cells)))
        self.cells.insert(index, cell)
        return cell

    def add_cell(self, code: str = "", language: str = "python",
                 cell_id: Optional[str] = None) -> Cell:
        return self.insert_cell(len(self.cells), code, language, cell_id)

    def remove_cell(self, cell: Cell) -> None:
        """Remove a cell; its outputs can no longer be updated by display id"""
        if cell in self.cells:
            self.cells.remove(cell)
        cell.closed = True
        self.display_ids.forget(cell)

    def close(self) -> None:
        for cell in self.cells:
            cell.closed = True
        self.display_ids.clear()
        self.closed = True
