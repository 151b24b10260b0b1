from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

from .output import CellOutput

if TYPE_CHECKING:
    from .notebook import Notebook


class CellStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(eq=False)
class Cell:
    id: str
    code: str = ""
    language: str = "python"
    notebook: Optional["Notebook"] = field(default=None, repr=False)
    status: CellStatus = CellStatus.IDLE
    outputs: List[CellOutput] = field(default_factory=list)
    execution_order: Optional[int] = None
    closed: bool = False

    @property
    def index(self) -> int:
        """Position of the cell in its notebook (0 when detached)"""
        if self.notebook is None or self not in self.notebook.cells:
            return 0
        return self.notebook.cells.index(self)
