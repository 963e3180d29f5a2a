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

from __future__ import annotations

import logging
from typing import Any, Callable

from opentelemetry.instrumentation.pg_client.completion import (
    Channel,
    SubsegmentCloser,
    listen_for_completion,
    select_channel,
    track_awaitable,
    wrap_callback,
)
from opentelemetry.instrumentation.pg_client.segments import TracingRuntime
from opentelemetry.instrumentation.pg_client.util import (
    connection_span_attributes,
    create_sql_data,
    get_operation_name,
    normalize_query_arguments,
    replace_callback,
    subsegment_name,
)
from opentelemetry.instrumentation.utils import is_instrumentation_enabled
from opentelemetry.semconv.trace import SpanAttributes
from opentelemetry.trace import Tracer

_logger = logging.getLogger(__name__)


class QueryInterceptor:
    """Records a subsegment for every call of a client's ``query`` method."""

    def __init__(
        self,
        tracer: Tracer,
        automatic_context: bool = True,
        database_system: str = "postgresql",
        capture_parameters: bool = False,
    ) -> None:
        self.runtime = TracingRuntime(tracer, automatic_mode=automatic_context)
        self.database_system = database_system
        self.capture_parameters = capture_parameters

    def _populate_span(self, span, invocation):
        if not span.is_recording():
            return
        operation = get_operation_name(invocation.text)
        if operation:
            span.set_attribute(SpanAttributes.DB_OPERATION, operation)
        if self.capture_parameters and invocation.values is not None:
            span.set_attribute(
                "db.statement.parameters", str(invocation.values)
            )

    def traced_query(
        self,
        query_method: Callable[..., Any],
        client: Any,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ):
        if not is_instrumentation_enabled():
            return query_method(*args, **kwargs)

        invocation = normalize_query_arguments(args, kwargs)
        connection_parameters = getattr(client, "connection_parameters", None)

        segment = self.runtime.get_segment()
        subsegment = segment.add_new_subsegment(
            subsegment_name(client),
            attributes=connection_span_attributes(
                self.database_system, connection_parameters
            ),
        )
        subsegment.add_sql_data(create_sql_data(connection_parameters))
        self._populate_span(subsegment.span, invocation)
        closer = SubsegmentCloser(subsegment)

        if invocation.callback is not None:
            args, kwargs = replace_callback(
                args,
                kwargs,
                invocation,
                wrap_callback(invocation.callback, closer),
            )

        try:
            if self.runtime.is_automatic_mode():
                result = self.runtime.get_namespace(subsegment.context).run(
                    query_method, *args, **kwargs
                )
            else:
                result = query_method(*args, **kwargs)
        except Exception as exc:
            closer(exc)
            raise

        channel = select_channel(invocation, result)
        if channel is Channel.AWAITABLE:
            return track_awaitable(result, client, closer)
        if channel is Channel.EVENTS:
            listen_for_completion(result, closer)
        elif channel is None:
            _logger.debug(
                "Query returned %s without a completion channel, "
                "closing subsegment",
                type(result).__name__,
            )
            closer()
        return result
