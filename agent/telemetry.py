"""Telemetry and metrics logging for orchestration runs."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
import json
import os
import threading
import time
from typing import Any

from agent.config import TelemetryConfig


@dataclass
class LLMCallMetric:
    """Metrics for a single model stream."""
    model: str
    attempts: int
    latency_ms: float
    tool_calls: int
    error: str | None = None


@dataclass
class ToolCallMetric:
    """Metrics for a single tool dispatch."""
    tool_name: str
    status: str
    duration_ms: float
    error_type: str | None = None


@dataclass
class LoopIterationMetric:
    """Metrics for a single streaming -> dispatching cycle."""
    iteration: int
    decision: str
    duration_ms: float


@dataclass
class LoopMetrics:
    """Run-level metrics summary."""
    conversation_id: str
    total_iterations: int
    tool_calls: list[ToolCallMetric]
    llm_calls: list[LLMCallMetric]
    total_duration_ms: float
    final_state: str


class Telemetry:
    """Capture structured telemetry for a conversation."""

    def __init__(self, config: TelemetryConfig, conversation_id: str):
        self.config = config
        self.conversation_id = conversation_id
        self._lock = threading.Lock()
        self._start_time = time.monotonic()
        self._llm_calls: list[LLMCallMetric] = []
        self._tool_calls: list[ToolCallMetric] = []
        self._total_iterations = 0
        self._final_state = ""
        self._log_path: str | None = None
        self._tracer = None

        if self.config.enabled:
            os.makedirs(self.config.log_dir, exist_ok=True)
            self._log_path = os.path.join(self.config.log_dir, f"{conversation_id}.jsonl")
            if self.config.otel_enabled:
                self._setup_otel()

    def record_llm_call(
        self,
        model: str,
        attempts: int,
        latency_ms: float,
        tool_calls: int,
        error: str | None = None,
    ) -> None:
        """Record a model stream metric."""
        if not self.config.enabled:
            return
        metric = LLMCallMetric(
            model=model,
            attempts=attempts,
            latency_ms=latency_ms,
            tool_calls=tool_calls,
            error=error,
        )
        self._llm_calls.append(metric)
        self._log_event("llm_call", asdict(metric))
        self._emit_span("llm_call", asdict(metric))

    def record_tool_call(
        self,
        tool_name: str,
        status: str,
        duration_ms: float,
        error_type: str | None = None,
    ) -> None:
        """Record a tool dispatch metric."""
        if not self.config.enabled:
            return
        metric = ToolCallMetric(
            tool_name=tool_name,
            status=status,
            duration_ms=duration_ms,
            error_type=error_type,
        )
        self._tool_calls.append(metric)
        self._log_event("tool_call", asdict(metric))
        self._emit_span("tool_call", asdict(metric))

    def record_iteration(self, iteration: int, decision: str, duration_ms: float) -> None:
        """Record a loop iteration metric."""
        if not self.config.enabled:
            return
        self._total_iterations = max(self._total_iterations, iteration)
        metric = LoopIterationMetric(iteration=iteration, decision=decision, duration_ms=duration_ms)
        self._log_event("loop_iteration", asdict(metric))
        self._emit_span("loop_iteration", asdict(metric))

    def finalize(self, final_state: str) -> None:
        """Finalize run metrics with the terminal loop state."""
        if not self.config.enabled:
            return
        self._final_state = final_state
        self._log_event("run_summary", self.summary_dict())

    def summary(self) -> LoopMetrics:
        """Return a run-level metrics summary."""
        total_duration_ms = (time.monotonic() - self._start_time) * 1000
        return LoopMetrics(
            conversation_id=self.conversation_id,
            total_iterations=self._total_iterations,
            tool_calls=list(self._tool_calls),
            llm_calls=list(self._llm_calls),
            total_duration_ms=total_duration_ms,
            final_state=self._final_state,
        )

    def summary_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        summary = self.summary()
        return {
            "conversation_id": summary.conversation_id,
            "total_iterations": summary.total_iterations,
            "tool_calls": [asdict(m) for m in summary.tool_calls],
            "llm_calls": [asdict(m) for m in summary.llm_calls],
            "total_duration_ms": summary.total_duration_ms,
            "final_state": summary.final_state,
        }

    def _log_event(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self.config.enabled or not self._log_path:
            return
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "conversation_id": self.conversation_id,
            "event": event_type,
            **payload,
        }
        line = json.dumps(record, default=str)
        with self._lock:
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _emit_span(self, name: str, attributes: dict[str, Any]) -> None:
        if not self._tracer:
            return
        with self._tracer.start_as_current_span(name) as span:
            for key, value in attributes.items():
                if value is None:
                    continue
                span.set_attribute(key, value)

    def _setup_otel(self) -> None:
        try:
            from opentelemetry import trace
            from opentelemetry.sdk.resources import Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError:
            self._log_event(
                "telemetry_warning",
                {"message": "OpenTelemetry packages are not installed; spans disabled."},
            )
            return

        resource = Resource.create({"service.name": self.config.otel_service_name})
        provider = TracerProvider(resource=resource)
        if self.config.otel_endpoint:
            exporter = OTLPSpanExporter(endpoint=self.config.otel_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        self._tracer = trace.get_tracer(__name__)
