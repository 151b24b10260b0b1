from .output import MimeType, OutputItem, CellOutput, CellOutputMetadata
from .cell import Cell, CellStatus
from .notebook import Notebook

__all__ = [
    "MimeType", "OutputItem", "CellOutput", "CellOutputMetadata",
    "Cell", "CellStatus",
    "Notebook"
]
