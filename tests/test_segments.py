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

from opentelemetry import context
from opentelemetry import trace as trace_api
from opentelemetry.instrumentation.pg_client.segments import (
    Namespace,
    SqlData,
    TracingRuntime,
)
from opentelemetry.semconv.trace import SpanAttributes
from opentelemetry.test.test_base import TestBase
from opentelemetry.trace import SpanKind, StatusCode


class TestSegments(TestBase):
    def setUp(self):
        super().setUp()
        self.tracer = self.tracer_provider.get_tracer(__name__)
        self.runtime = TracingRuntime(self.tracer)

    def test_subsegment_without_ambient_segment(self):
        subsegment = self.runtime.get_segment().add_new_subsegment("db@host")
        subsegment.close()

        span = self.memory_exporter.get_finished_spans()[0]
        self.assertEqual(span.name, "db@host")
        self.assertIs(span.kind, SpanKind.CLIENT)
        self.assertIsNone(span.parent)
        self.assertIs(span.status.status_code, StatusCode.UNSET)

    def test_subsegment_parented_to_current_span(self):
        with self.tracer.start_as_current_span("request") as parent:
            segment = self.runtime.get_segment()
        subsegment = segment.add_new_subsegment("db@host")
        subsegment.close()

        span = self.memory_exporter.get_finished_spans()[-1]
        self.assertEqual(span.parent.span_id, parent.get_span_context().span_id)

    def test_close_is_idempotent(self):
        subsegment = self.runtime.get_segment().add_new_subsegment("db@host")
        subsegment.close(ValueError("first"))
        subsegment.close()

        spans = self.memory_exporter.get_finished_spans()
        self.assertEqual(len(spans), 1)
        self.assertEqual(spans[0].status.description, "ValueError: first")

    def test_close_with_non_exception_error(self):
        subsegment = self.runtime.get_segment().add_new_subsegment("db@host")
        subsegment.close("connection refused")

        span = self.memory_exporter.get_finished_spans()[0]
        self.assertIs(span.status.status_code, StatusCode.ERROR)
        self.assertEqual(span.status.description, "connection refused")
        self.assertEqual(len(span.events), 0)

    def test_add_sql_data(self):
        subsegment = self.runtime.get_segment().add_new_subsegment("db@host")
        subsegment.add_sql_data(
            SqlData(None, None, "app", "host:5432/db", "SELECT ?")
        )
        subsegment.close()

        attributes = self.memory_exporter.get_finished_spans()[0].attributes
        self.assertEqual(attributes[SpanAttributes.DB_USER], "app")
        self.assertEqual(
            attributes[SpanAttributes.DB_CONNECTION_STRING], "host:5432/db"
        )
        self.assertEqual(attributes[SpanAttributes.DB_STATEMENT], "SELECT ?")

    def test_namespace_scopes_the_context(self):
        subsegment = self.runtime.get_segment().add_new_subsegment("db@host")
        namespace = self.runtime.get_namespace(subsegment.context)

        current = namespace.run(trace_api.get_current_span)

        self.assertIs(current, subsegment.span)
        self.assertIs(trace_api.get_current_span(), trace_api.INVALID_SPAN)

    def test_namespace_detaches_on_error(self):
        before = context.get_current()

        def fail():
            raise ValueError()

        with self.assertRaises(ValueError):
            Namespace(context.Context()).run(fail)

        self.assertEqual(context.get_current(), before)

    def test_automatic_mode(self):
        self.assertTrue(self.runtime.is_automatic_mode())
        self.assertFalse(
            TracingRuntime(self.tracer, automatic_mode=False).is_automatic_mode()
        )
