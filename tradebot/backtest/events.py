"""Progress and ledger event stream.

A run emits an ordered stream of ProgressEvents (init, progress, ledger
changes, result, done) to an EventSink. Events carry simulation time only, so
two identical runs produce identical streams. JsonlEventWriter appends one JSON
object per line and is safe to tail while a run is in progress.
"""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


class EventType:
    """Event type names."""
    INIT = "init"
    PROGRESS = "progress"
    POSITION_OPEN = "position_open"
    POSITION_CLOSE = "position_close"
    DCA_FILL = "dca_fill"
    PARTIAL_CLOSE = "partial_close"
    CANCELED = "canceled"
    ERROR = "error"
    RESULT = "result"
    DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    """One event of a run's stream."""

    seq: int
    type: str
    pair: str
    sim_time: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "type": self.type,
            "pair": self.pair,
            "sim_time": self.sim_time,
            "data": self.data,
        }


class EventSink:
    """Receives events; the default implementation discards them."""

    def emit(self, event: ProgressEvent):
        pass

    def close(self):
        pass


class CollectingSink(EventSink):
    """Keeps events in memory (tests, in-process consumers)."""

    def __init__(self):
        self.events: List[ProgressEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: ProgressEvent):
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> List[ProgressEvent]:
        return [e for e in self.events if e.type == event_type]


class JsonlEventWriter(EventSink):
    """Append-only JSONL writer.

    Example:
        >>> writer = JsonlEventWriter("runs/btc.jsonl")
        >>> writer.emit(ProgressEvent(1, "init", "binance:BTCUSDT:spot:1h"))
        >>> writer.close()
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fp = open(self.path, "a", encoding="utf-8", buffering=1)
        self._lock = threading.Lock()

    def emit(self, event: ProgressEvent):
        line = json.dumps(event.to_dict(), ensure_ascii=False, separators=(",", ":"), sort_keys=True)
        with self._lock:
            self._fp.write(line + "\n")

    def close(self):
        with self._lock:
            if self._fp and not self._fp.closed:
                self._fp.flush()
                self._fp.close()


class EventEmitter:
    """Per-run sequencer that stamps events with a pair name and sequence number."""

    def __init__(self, sink: EventSink, pair: str):
        self.sink = sink
        self.pair = pair
        self._seq = 0
        self.sim_time: Optional[int] = None

    def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None):
        self._seq += 1
        self.sink.emit(ProgressEvent(self._seq, event_type, self.pair, self.sim_time, dict(data or {})))

    def ledger_listener(self, event_type: str, payload: dict):
        """Callback handed to the VirtualExchange."""
        self.emit(event_type, payload)
