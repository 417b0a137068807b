"""Stream cursors over the change log."""

from cdc_engine.streams.cursor import CursorLease, StreamCursor
from cdc_engine.streams.manager import StreamManager

__all__ = ["CursorLease", "StreamCursor", "StreamManager"]
