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
The integration with PostgreSQL clients traces every call made through a
client's ``query`` entry point. It supports clients whose ``Client.query``
accepts ``(sql)``, ``(config)``, ``(sql, values)``, ``(sql, values, callback)``
or ``(config, callback)`` and reports completion through the callback,
through ``end``/``error`` events on the returned query object, or through an
awaitable. It can be enabled by using ``PgClientInstrumentor``.

Each query gets one ``CLIENT`` span named ``<database>@<host>`` carrying the
connecting user and ``<host>:<port>/<database>``. The span ends exactly once,
when the query completes, and records the error when it fails. Errors are
never swallowed: they still reach the callback, the other ``error`` listeners
or the awaiting caller.

Usage
-----

.. code-block:: python

    import pg_driver
    from opentelemetry.instrumentation.pg_client import PgClientInstrumentor

    # Wrap Client.query of the driver module in place
    PgClientInstrumentor().instrument(module=pg_driver)

    client = pg_driver.Client(database="Database")
    client.query("SELECT 1", [], lambda err, rows: print(rows))

.. code-block:: python

    from opentelemetry.instrumentation.pg_client import PgClientInstrumentor

    # Alternatively, use instrument_client for an individual client
    client = pg_driver.Client(database="Database")
    traced_client = PgClientInstrumentor.instrument_client(client)
    traced_client.query("SELECT 1").on("end", lambda: print("done"))

Configuration
-------------

Automatic context
*****************
By default the query is dispatched with its span set as the current span, so
work started by the driver while dispatching is parented to it. Pass
``automatic_context=False`` to ``instrument`` (or set
``OTEL_PYTHON_PG_CLIENT_AUTOMATIC_CONTEXT=false``) to dispatch without
changing the current context.

Query parameters
****************
Query values are not recorded by default since they may contain sensitive
data. Pass ``capture_parameters=True`` to record them as
``db.statement.parameters``.

API
---
"""

from typing import Collection

from opentelemetry.instrumentation.instrumentor import BaseInstrumentor
from opentelemetry.instrumentation.pg_client.package import _instruments
from opentelemetry.instrumentation.pg_client.patch import (
    TracedClientProxy,
    capture_postgres,
    instrument_client,
    release_postgres,
    uninstrument_client,
)

__all__ = [
    "PgClientInstrumentor",
    "TracedClientProxy",
    "capture_postgres",
    "instrument_client",
    "release_postgres",
    "uninstrument_client",
]


class PgClientInstrumentor(BaseInstrumentor):
    _instrumented_module = None

    def instrumentation_dependencies(self) -> Collection[str]:
        return _instruments

    def _instrument(self, **kwargs):
        """Wrap ``Client.query`` of the client module given as ``module``.

        Args:
            module: the client module exposing ``Client``.
            tracer_provider: The :class:`opentelemetry.trace.TracerProvider`
                to use. If omitted the current configured one is used.
            automatic_context: Dispatch queries with their span as the
                current span. Defaults to
                ``OTEL_PYTHON_PG_CLIENT_AUTOMATIC_CONTEXT``, else ``True``.
            capture_parameters: Record the query values as
                ``db.statement.parameters``. Defaults to ``False``.
        """
        module = kwargs.get("module")
        if module is None:
            raise TypeError(
                "PgClientInstrumentor.instrument() requires module="
            )
        capture_postgres(
            module,
            tracer_provider=kwargs.get("tracer_provider"),
            automatic_context=kwargs.get("automatic_context"),
            capture_parameters=kwargs.get("capture_parameters", False),
        )
        self._instrumented_module = module

    def _uninstrument(self, **kwargs):
        module = kwargs.get("module", self._instrumented_module)
        if module is not None:
            release_postgres(module)
        self._instrumented_module = None

    @staticmethod
    def instrument_client(
        client,
        tracer_provider=None,
        automatic_context=None,
        capture_parameters=False,
    ):
        """Enable instrumentation for a single client.

        Args:
            client: The client object to be instrumented.
            tracer_provider: opentelemetry.trace.TracerProvider, optional
                The TracerProvider to use for instrumentation. If not specified,
                the global TracerProvider will be used.
            automatic_context: bool, optional
                Dispatch queries with their span as the current span.
            capture_parameters: bool, optional
                Record the query values as ``db.statement.parameters``.

        Returns:
            A proxy of the client whose ``query`` calls are traced.
        """
        return instrument_client(
            client,
            tracer_provider=tracer_provider,
            automatic_context=automatic_context,
            capture_parameters=capture_parameters,
        )

    @staticmethod
    def uninstrument_client(client):
        return uninstrument_client(client)
