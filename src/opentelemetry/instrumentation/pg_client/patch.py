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
import os
from types import ModuleType
from typing import Any, Optional

import wrapt
from wrapt import wrap_function_wrapper

from opentelemetry import trace
from opentelemetry.instrumentation.pg_client.environment_variables import (
    OTEL_PYTHON_PG_CLIENT_AUTOMATIC_CONTEXT,
)
from opentelemetry.instrumentation.pg_client.interceptor import (
    QueryInterceptor,
)
from opentelemetry.instrumentation.pg_client.version import __version__
from opentelemetry.instrumentation.utils import unwrap
from opentelemetry.trace import TracerProvider

_logger = logging.getLogger(__name__)

_INSTRUMENTATION_NAME = "opentelemetry.instrumentation.pg_client"
_CLIENT_CLASS = "Client"
_QUERY_METHOD = "query"


def _automatic_context_enabled(automatic_context: Optional[bool]) -> bool:
    if automatic_context is not None:
        return automatic_context
    return (
        os.getenv(OTEL_PYTHON_PG_CLIENT_AUTOMATIC_CONTEXT, "true").lower()
        != "false"
    )


def _get_interceptor(
    tracer_provider: Optional[TracerProvider],
    automatic_context: Optional[bool],
    capture_parameters: bool = False,
) -> QueryInterceptor:
    tracer = trace.get_tracer(
        _INSTRUMENTATION_NAME,
        __version__,
        tracer_provider,
        schema_url="https://opentelemetry.io/schemas/1.11.0",
    )
    return QueryInterceptor(
        tracer,
        automatic_context=_automatic_context_enabled(automatic_context),
        capture_parameters=capture_parameters,
    )


def capture_postgres(
    module: ModuleType,
    tracer_provider: Optional[TracerProvider] = None,
    automatic_context: Optional[bool] = None,
    capture_parameters: bool = False,
) -> ModuleType:
    """Trace every ``query`` made through ``module.Client``.

    Returns the same module, with ``Client.query`` wrapped in place.
    """
    client_class = getattr(module, _CLIENT_CLASS)
    if isinstance(getattr(client_class, _QUERY_METHOD), wrapt.ObjectProxy):
        _logger.warning(
            "Attempting to instrument %s.%s.%s while already instrumented",
            getattr(module, "__name__", module),
            _CLIENT_CLASS,
            _QUERY_METHOD,
        )
        return module

    interceptor = _get_interceptor(
        tracer_provider, automatic_context, capture_parameters
    )

    def _traced_query(func, instance, args, kwargs):
        return interceptor.traced_query(func, instance, args, kwargs)

    wrap_function_wrapper(client_class, _QUERY_METHOD, _traced_query)
    return module


def release_postgres(module: ModuleType) -> ModuleType:
    unwrap(getattr(module, _CLIENT_CLASS), _QUERY_METHOD)
    return module


# pylint: disable=abstract-method
class TracedClientProxy(wrapt.ObjectProxy):
    def __init__(self, client: Any, interceptor: QueryInterceptor):
        super().__init__(client)
        self._self_interceptor = interceptor

    def query(self, *args: Any, **kwargs: Any):
        return self._self_interceptor.traced_query(
            self.__wrapped__.query, self.__wrapped__, args, kwargs
        )


def instrument_client(
    client: Any,
    tracer_provider: Optional[TracerProvider] = None,
    automatic_context: Optional[bool] = None,
    capture_parameters: bool = False,
) -> TracedClientProxy:
    """Return ``client`` wrapped so that its ``query`` calls are traced.

    The client itself and its class are left untouched.
    """
    if isinstance(client, TracedClientProxy):
        _logger.warning("Client already instrumented")
        return client
    return TracedClientProxy(
        client,
        _get_interceptor(
            tracer_provider, automatic_context, capture_parameters
        ),
    )


def uninstrument_client(client: Any) -> Any:
    if isinstance(client, TracedClientProxy):
        return client.__wrapped__
    _logger.warning("Client is not instrumented")
    return client

