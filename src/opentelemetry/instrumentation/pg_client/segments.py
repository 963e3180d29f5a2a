# Copyright The OpenTelemetry Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Segment and subsegment handles on top of the OpenTelemetry API.

A ``Segment`` is the ambient parent (an OpenTelemetry ``Context``), a
``Subsegment`` is the client span recorded for a single query and a
``Namespace`` makes a context current for the duration of one call.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, NamedTuple, Optional, TypeVar

from opentelemetry import context, trace
from opentelemetry.semconv.trace import SpanAttributes
from opentelemetry.trace import SpanKind, Status, StatusCode, Tracer

_logger = logging.getLogger(__name__)

R = TypeVar("R")


class SqlData(NamedTuple):
    """SQL metadata recorded on a subsegment."""

    preprocessed: Optional[str]
    database_type: Optional[str]
    user: Optional[str]
    url: Optional[str]
    sanitized_query: Optional[str]


class Subsegment:
    def __init__(self, span: trace.Span, parent: context.Context):
        self._span = span
        self._context = trace.set_span_in_context(span, parent)
        self._closed = False

    @property
    def span(self) -> trace.Span:
        return self._span

    @property
    def context(self) -> context.Context:
        """The parent context with this subsegment set as the current span."""
        return self._context

    def add_sql_data(self, sql_data: SqlData) -> None:
        if not self._span.is_recording():
            return
        if sql_data.user is not None:
            self._span.set_attribute(SpanAttributes.DB_USER, sql_data.user)
        if sql_data.url is not None:
            self._span.set_attribute(
                SpanAttributes.DB_CONNECTION_STRING, sql_data.url
            )
        if sql_data.sanitized_query is not None:
            self._span.set_attribute(
                SpanAttributes.DB_STATEMENT, sql_data.sanitized_query
            )

    def close(self, error: Any = None) -> None:
        """End the span, recording ``error`` when one is given.

        Closing an already closed subsegment does nothing.
        """
        if self._closed:
            _logger.debug("Subsegment %s already closed", self._span)
            return
        self._closed = True
        if error is not None:
            if isinstance(error, BaseException):
                self._span.record_exception(error)
                description = f"{type(error).__name__}: {error}"
            else:
                description = str(error)
            self._span.set_status(Status(StatusCode.ERROR, description))
        self._span.end()


class Segment:
    def __init__(self, tracer: Tracer, parent: context.Context):
        self._tracer = tracer
        self._parent = parent

    def add_new_subsegment(
        self, name: str, attributes: Optional[dict] = None
    ) -> Subsegment:
        # An empty parent context starts a new trace, so there is always a
        # subsegment to record on.
        span = self._tracer.start_span(
            name,
            context=self._parent,
            kind=SpanKind.CLIENT,
            attributes=attributes,
        )
        return Subsegment(span, self._parent)


class Namespace:
    """Runs callables with ``ctx`` attached as the current context."""

    def __init__(self, ctx: context.Context):
        self._context = ctx

    def run(self, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        token = context.attach(self._context)
        try:
            return func(*args, **kwargs)
        finally:
            context.detach(token)


class TracingRuntime:
    def __init__(self, tracer: Tracer, automatic_mode: bool = True):
        self._tracer = tracer
        self._automatic_mode = automatic_mode

    def get_segment(self) -> Segment:
        return Segment(self._tracer, context.get_current())

    def is_automatic_mode(self) -> bool:
        return self._automatic_mode

    def get_namespace(self, ctx: context.Context) -> Namespace:
        return Namespace(ctx)
