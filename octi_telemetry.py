"""Telemetry schema and sinks for Octi search instrumentation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Mapping, Optional, Protocol
import json
import threading
import time


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TelemetryEnvelope:
    event: str
    ts_ms: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class SearchStartEvent:
    player: str
    time_limit_ms: int
    max_depth: int
    buffer_ms: int
    legal_actions: int


@dataclass(frozen=True)
class IterationDoneEvent:
    depth: int
    score: int
    best_move: Optional[str]
    in_budget: bool
    nodes: int
    elapsed_ms: int


@dataclass(frozen=True)
class SearchEndEvent:
    best_move: Optional[str]
    score: int
    depth: int
    complete: bool
    nodes: int
    elapsed_ms: int
    reason: str


class TelemetrySink(Protocol):
    def emit(self, envelope: TelemetryEnvelope) -> None:
        ...

    def close(self) -> None:
        ...


class CallbackTelemetrySink:
    def __init__(self, callback: Callable[[TelemetryEnvelope], None]) -> None:
        self._callback = callback

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._callback(envelope)

    def close(self) -> None:
        return


class ListTelemetrySink:
    """Keeps every envelope in memory; handy for tests and the CLI --explain view."""

    def __init__(self) -> None:
        self.events: List[TelemetryEnvelope] = []

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self.events.append(envelope)

    def named(self, event: str) -> List[TelemetryEnvelope]:
        return [envelope for envelope in self.events if envelope.event == event]

    def close(self) -> None:
        return


class JsonlFileSink:
    """Appends one compact JSON object per event to a file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._handle: Optional[IO[str]] = self._path.open("a", encoding="utf-8")

    def emit(self, envelope: TelemetryEnvelope) -> None:
        payload = {
            "event": envelope.event,
            "ts_ms": envelope.ts_ms,
            "data": envelope.data,
        }
        line = json.dumps(payload, separators=(",", ":"))
        with self._lock:
            if self._handle is None:
                return
            self._handle.write(line + "\n")
            self._handle.flush()

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            self._handle.close()
            self._handle = None


def make_envelope(event: str, payload: Mapping[str, Any]) -> TelemetryEnvelope:
    return TelemetryEnvelope(event=event, ts_ms=now_ms(), data=dict(payload))


def emit_event(sink: Optional[TelemetrySink], event: str, payload: Mapping[str, Any]) -> bool:
    """Deliver one event and report whether it arrived; a failing sink never breaks a search."""
    if sink is None:
        return False
    try:
        sink.emit(make_envelope(event, payload))
    except Exception:
        return False
    return True


def emit_dataclass_event(sink: Optional[TelemetrySink], event: str, payload_obj: object) -> bool:
    if sink is None:
        return False
    return emit_event(sink, event, asdict(payload_obj))
