"""Index of outputs by kernel display id, used for in-place updates."""
import logging
from typing import Dict, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import Cell, CellOutput, Notebook

logger = logging.getLogger("cellbridge.display")


class DisplayIdTracker:
    """
    Maps a display id to the last output rendered for it and the owning cell.

    One tracker belongs to one notebook. It never owns the outputs: when the
    owning cell is closed the entry simply stops resolving.
    """

    def __init__(self):
        self._outputs: Dict[str, Tuple["CellOutput", "Cell"]] = {}
        self._cell_display_ids: Dict[str, str] = {}

    def track(self, cell: "Cell", display_id: str, output: "CellOutput") -> None:
        """Register ``output`` for ``display_id``; the latest call wins."""
        previous = self._outputs.get(display_id)
        if previous is not None and previous[1] is not cell:
            logger.debug("Display %s moved from cell %s to cell %s",
                         display_id, previous[1].id, cell.id)
        self._outputs[display_id] = (output, cell)
        self._cell_display_ids[cell.id] = display_id

    def resolve(self, display_id: str) -> Optional["CellOutput"]:
        """Return the tracked output, or None if unknown or its cell is closed."""
        entry = self._outputs.get(display_id)
        if entry is None:
            return None
        output, cell = entry
        if cell.closed:
            return None
        return output

    def display_id_for(self, cell: "Cell") -> Optional[str]:
        """The display id most recently tracked for ``cell``."""
        return self._cell_display_ids.get(cell.id)

    def forget(self, cell: "Cell") -> None:
        """Drop every display owned by ``cell``."""
        owned = [display_id for display_id, (_, owner) in self._outputs.items() if owner is cell]
        for display_id in owned:
            del self._outputs[display_id]
        self._cell_display_ids.pop(cell.id, None)

    def clear(self) -> None:
        self._outputs.clear()
        self._cell_display_ids.clear()

    def __len__(self) -> int:
        return len(self._outputs)


def track_output(cell: "Cell", display_id: str, output: "CellOutput") -> None:
    """Track ``output`` in the index of the notebook that owns ``cell``."""
    if cell.notebook is None:
        logger.debug("Cell %s has no notebook; display %s not tracked", cell.id, display_id)
        return
    cell.notebook.display_ids.track(cell, display_id, output)


def resolve_output(notebook: "Notebook", display_id: str) -> Optional["CellOutput"]:
    return notebook.display_ids.resolve(display_id)
