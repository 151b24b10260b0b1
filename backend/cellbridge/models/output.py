import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class MimeType(str, Enum):
    """MIME types with special meaning to the notebook host"""
    STDOUT = "application/vnd.code.notebook.stdout"
    STDERR = "application/vnd.code.notebook.stderr"
    ERROR = "application/vnd.code.notebook.error"
    PLAIN = "text/plain"
    MARKDOWN = "text/markdown"
    HTML = "text/html"
    LATEX = "text/latex"
    JSON = "application/json"
    JAVASCRIPT = "application/javascript"
    PNG = "image/png"
    JPEG = "image/jpeg"
    GIF = "image/gif"
    SVG = "image/svg+xml"


@dataclass
class OutputItem:
    """Single (mime, bytes) payload inside a rendered output"""
    mime: str
    data: bytes = b""

    @classmethod
    def text(cls, value: str, mime: str = MimeType.PLAIN.value) -> "OutputItem":
        return cls(mime=mime, data=value.encode("utf-8"))

    @classmethod
    def stdout(cls, value: str) -> "OutputItem":
        return cls.text(value, MimeType.STDOUT.value)

    @classmethod
    def stderr(cls, value: str) -> "OutputItem":
        return cls.text(value, MimeType.STDERR.value)

    @classmethod
    def error(cls, name: str, message: str, stack: str) -> "OutputItem":
        payload = {"name": name, "message": message, "stack": stack}
        return cls.text(json.dumps(payload), MimeType.ERROR.value)

    def decode(self) -> str:
        return self.data.decode("utf-8")


@dataclass
class CellOutputMetadata:
    """
    Metadata kept alongside a rendered output.

    Holds what is needed to rebuild the original kernel output record
    when the notebook is saved.
    """
    output_type: Optional[str] = None
    execution_count: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    # display_id lives here; it is what lets other cells update this output
    transient: Optional[Dict[str, Any]] = None
    original_error: Optional[Dict[str, Any]] = None
    display_open_plot_icon: bool = False


@dataclass(eq=False)
class CellOutput:
    """
    One renderable output: items ordered richest-first plus metadata.

    Compared by identity; the host and the display-id index hold
    references to specific outputs.
    """
    items: List[OutputItem] = field(default_factory=list)
    metadata: CellOutputMetadata = field(default_factory=CellOutputMetadata)

    @property
    def mimes(self) -> List[str]:
        return [item.mime for item in self.items]
