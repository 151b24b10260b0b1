"""
Conversion between kernel output records and renderable cell outputs.

Kernel records follow the nbformat output schema (``output_type`` plus
kind-specific fields) and are plain dicts. Rendered outputs are
``CellOutput`` objects: (mime, bytes) items ordered richest-first, with
enough metadata to rebuild the record when the notebook is saved.
"""
import base64
import binascii
import json
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional

from ..models import CellOutput, CellOutputMetadata, MimeType, OutputItem
from .stream import concat_multiline_string, format_stream_text, split_multiline_string

logger = logging.getLogger("cellbridge.codec")

ProtocolRecord = Dict[str, Any]

DATA_OUTPUT_TYPES = ("display_data", "execute_result", "update_display_data")

# Richest renderer first; ``.*`` entries match by prefix
ORDER_OF_MIME_TYPES = [
    "application/vnd.*",
    "application/vdom.*",
    "application/geo+json",
    "application/x-nteract-model-debug+json",
    "text/html",
    "application/javascript",
    "image/gif",
    "text/latex",
    "text/markdown",
    "image/svg+xml",
    "image/png",
    "image/jpeg",
    "application/json",
    "text/plain",
]

TEXT_MIME_TYPES = (
    MimeType.PLAIN.value,
    MimeType.MARKDOWN.value,
    MimeType.STDERR.value,
    MimeType.STDOUT.value,
)

STREAM_MIME_TYPES = (MimeType.STDOUT.value, MimeType.STDERR.value)


def _mime_rank(mime: str) -> int:
    for index, pattern in enumerate(ORDER_OF_MIME_TYPES):
        prefix = pattern[:-2] if pattern.endswith(".*") else pattern
        if mime.startswith(prefix):
            return index
    return len(ORDER_OF_MIME_TYPES)


def sort_output_items(items: List[OutputItem]) -> List[OutputItem]:
    """Order items by display priority; unknown mimes go last in original order."""
    return sorted(items, key=lambda item: _mime_rank(item.mime))


def _is_text_mime(mime: str) -> bool:
    return mime.startswith("text/") or mime in TEXT_MIME_TYPES


def _is_binary_image(mime: str) -> bool:
    return mime.startswith("image/") and mime != MimeType.SVG.value


def error_item_from_exception(error: BaseException) -> OutputItem:
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return OutputItem.error(type(error).__name__, str(error), stack)


def to_output_item(mime: str, value: Any) -> OutputItem:
    """
    Convert one mime bundle value to an output item.

    Text is joined, base64 images are decoded, objects become JSON.
    A value that cannot be converted turns into an error item.
    """
    if not value:
        return OutputItem.text("", mime)

    try:
        if _is_text_mime(mime) and isinstance(value, (str, list)):
            return OutputItem.text(concat_multiline_string(value), mime)
        if _is_binary_image(mime) and isinstance(value, str):
            # Kernels may wrap base64 across lines
            return OutputItem(mime=mime, data=base64.b64decode("".join(value.split()), validate=True))
        if isinstance(value, dict):
            return OutputItem.text(json.dumps(value), mime)
        if isinstance(value, list):
            if all(isinstance(entry, str) for entry in value):
                return OutputItem.text(concat_multiline_string(value), mime)
            return OutputItem.text(json.dumps(value), mime)
        return OutputItem.text(str(value), mime)
    except (binascii.Error, ValueError, TypeError, AttributeError) as e:
        logger.debug("Could not convert %s output: %s", mime, e)
        return error_item_from_exception(e)


def create_cell_output(data: Dict[str, Any]) -> CellOutput:
    """Build an output from a raw mime bundle, without kernel metadata."""
    items = [to_output_item(mime, value) for mime, value in data.items()]
    return CellOutput(items=sort_output_items(items))


def _output_metadata(record: ProtocolRecord) -> CellOutputMetadata:
    metadata = CellOutputMetadata(output_type=record.get("output_type"))
    if record.get("transient"):
        metadata.transient = record["transient"]

    if metadata.output_type in DATA_OUTPUT_TYPES:
        metadata.execution_count = record.get("execution_count")
        metadata.metadata = record.get("metadata") or {}

    return metadata


def _translate_display_data(record: ProtocolRecord) -> CellOutput:
    metadata = _output_metadata(record)
    data = record.get("data") or {}
    if MimeType.SVG.value in data or MimeType.PNG.value in data:
        metadata.display_open_plot_icon = True

    items = [to_output_item(mime, value) for mime, value in data.items()]
    return CellOutput(items=sort_output_items(items), metadata=metadata)


def _translate_stream(record: ProtocolRecord) -> CellOutput:
    text = format_stream_text(concat_multiline_string(record.get("text", "")))
    if record.get("name") == "stderr":
        item = OutputItem.stderr(text)
    else:
        item = OutputItem.stdout(text)
    return CellOutput(items=[item], metadata=_output_metadata(record))


def _translate_error(record: ProtocolRecord) -> CellOutput:
    metadata = _output_metadata(record)
    metadata.original_error = record
    item = OutputItem.error(
        record.get("ename") or "",
        record.get("evalue") or "",
        "\n".join(record.get("traceback") or []),
    )
    return CellOutput(items=[item], metadata=metadata)


_OUTPUT_TRANSLATORS: Dict[str, Callable[[ProtocolRecord], CellOutput]] = {
    "display_data": _translate_display_data,
    "execute_result": _translate_display_data,
    "update_display_data": _translate_display_data,
    "stream": _translate_stream,
    "error": _translate_error,
}


def to_renderable(record: ProtocolRecord) -> CellOutput:
    """Convert a kernel output record into a renderable cell output."""
    translate = _OUTPUT_TRANSLATORS.get(record.get("output_type"), _translate_display_data)
    return translate(record)


def create_error_output(error: BaseException) -> ProtocolRecord:
    """Describe a Python exception as a kernel ``error`` record."""
    message = str(error)
    name = type(error).__name__
    if error.__traceback__ is not None:
        stack = traceback.format_exception(type(error), error, error.__traceback__)
        lines = "".join(stack).splitlines()
    else:
        lines = []
    return {
        "output_type": "error",
        "ename": name or message or "Error",
        "evalue": message or name or "Error",
        "traceback": lines,
    }


def get_output_stream_type(output: CellOutput) -> Optional[str]:
    """Stream channel of an output, judged by its first item."""
    if not output.items:
        return None
    return "stderr" if output.items[0].mime == MimeType.STDERR.value else "stdout"


def is_stream_output(output: CellOutput, stream_name: str) -> bool:
    return (
        output.metadata.output_type == "stream"
        and get_output_stream_type(output) == stream_name
    )


def _to_protocol_value(mime: str, data: bytes) -> Any:
    if not data:
        return ""
    try:
        if mime == MimeType.ERROR.value:
            return json.loads(data.decode("utf-8"))
        if _is_text_mime(mime):
            return split_multiline_string(data.decode("utf-8"))
        if _is_binary_image(mime):
            return base64.b64encode(data).decode("ascii")
        if "json" in mime.lower():
            text = data.decode("utf-8")
            return json.loads(text) if text else text
        return data.decode("utf-8")
    except ValueError as e:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors
        logger.debug("Could not restore %s output: %s", mime, e)
        return ""


def _mime_bundle(output: CellOutput) -> Dict[str, Any]:
    return {item.mime: _to_protocol_value(item.mime, item.data) for item in output.items}


def _empty_error() -> ProtocolRecord:
    return {"output_type": "error", "ename": "", "evalue": "", "traceback": []}


def _restore_error(output: CellOutput) -> ProtocolRecord:
    first = output.items[0] if output.items else None
    # Hosts can hand back an error item without its payload
    if first is None or not first.data:
        return _empty_error()
    try:
        value = json.loads(first.decode())
    except ValueError:
        return _empty_error()
    if not isinstance(value, dict):
        return _empty_error()

    original = output.metadata.original_error or {}
    traceback_lines = original.get("traceback")
    if traceback_lines is None:
        traceback_lines = split_multiline_string(value.get("stack") or value.get("message") or "")

    return {
        "output_type": "error",
        "ename": value.get("name") or "",
        "evalue": value.get("message") or "",
        "traceback": traceback_lines,
    }


def _restore_stream(output: CellOutput) -> ProtocolRecord:
    # A line split across two items is one line
    text = "".join(item.decode() for item in output.items if item.mime in STREAM_MIME_TYPES)
    return {
        "output_type": "stream",
        "name": get_output_stream_type(output) or "stdout",
        "text": split_multiline_string(text),
    }


def _restore_unknown(output: CellOutput) -> ProtocolRecord:
    metadata = output.metadata
    is_error = len(output.items) == 1 and output.items[0].mime == MimeType.ERROR.value
    if is_error:
        return _restore_error(output)

    is_stream = all(item.mime in STREAM_MIME_TYPES for item in output.items)
    output_type = metadata.output_type or ("stream" if is_stream else "display_data")

    if output_type == "stream":
        return _restore_stream(output)
    if output_type == "display_data":
        record = {"output_type": "display_data", "data": {}, "metadata": {}}
    else:
        record = {"output_type": output_type}

    if metadata.metadata:
        record["metadata"] = metadata.metadata
    if output.items:
        record["data"] = _mime_bundle(output)
    return record


def to_protocol_record(output: CellOutput) -> ProtocolRecord:
    """
    Rebuild the kernel output record for a rendered output.

    Dispatches on the stored ``output_type`` rather than the item mimes.
    Outputs without one (added by other tools) are classified heuristically.
    """
    metadata = output.metadata
    output_type = metadata.output_type

    if output_type == "error":
        record = _restore_error(output)
    elif output_type == "stream":
        record = _restore_stream(output)
    elif output_type in DATA_OUTPUT_TYPES:
        record = {
            "output_type": output_type,
            "data": _mime_bundle(output),
            "metadata": metadata.metadata or {},
        }
        if output_type == "execute_result":
            count = metadata.execution_count
            record["execution_count"] = count if isinstance(count, int) else None
    else:
        record = _restore_unknown(output)

    if metadata.transient:
        record["transient"] = metadata.transient
    return record
