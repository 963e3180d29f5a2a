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
Some utils used by the pg_client integration
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Callable, NamedTuple, Optional, Union

from opentelemetry.instrumentation.pg_client.segments import SqlData
from opentelemetry.semconv.trace import SpanAttributes

_CALLBACK_KWARG = "callback"
_VALUES_KWARG = "values"
_LEADING_COMMENT = re.compile(r"^\s*/\*.*?\*/", re.DOTALL)


def get_connection_attribute(source: Any, name: str) -> Any:
    """Read ``name`` from a mapping or from an object attribute."""
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


class QueryInvocation(NamedTuple):
    query: Any
    values: Any
    callback: Optional[Callable[..., Any]]
    # Positional index or keyword name of the callback, None without one.
    callback_slot: Union[int, str, None]

    @property
    def text(self) -> Optional[str]:
        if isinstance(self.query, str):
            return self.query
        for field in ("text", "sql"):
            value = get_connection_attribute(self.query, field)
            if isinstance(value, str):
                return value
        return None


def normalize_query_arguments(
    args: tuple[Any, ...], kwargs: dict[str, Any]
) -> QueryInvocation:
    """Inspect the arguments of a ``query`` call without changing them.

    Supported shapes are ``(sql)``, ``(config)``, ``(sql, values)``,
    ``(sql, values, callback)`` and ``(config, callback)``, where ``values``
    and ``callback`` may also be passed as keywords.
    """
    query = args[0] if args else None
    callback = None
    callback_slot = None
    positional = list(args[1:])

    if callable(kwargs.get(_CALLBACK_KWARG)):
        callback = kwargs[_CALLBACK_KWARG]
        callback_slot = _CALLBACK_KWARG
    elif positional and callable(positional[-1]):
        callback = positional.pop()
        callback_slot = len(args) - 1

    if positional:
        values = positional[0]
    elif _VALUES_KWARG in kwargs:
        values = kwargs[_VALUES_KWARG]
    elif query is not None and not isinstance(query, str):
        values = get_connection_attribute(query, _VALUES_KWARG)
    else:
        values = None

    return QueryInvocation(query, values, callback, callback_slot)


def get_operation_name(text: Optional[str]) -> str:
    """The first keyword of ``text``, skipping a leading block comment."""
    if not text:
        return ""
    words = _LEADING_COMMENT.sub("", text).split()
    return words[0] if words else ""


def replace_callback(
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    invocation: QueryInvocation,
    callback: Callable[..., Any],
) -> tuple[tuple[Any, ...], dict[str, Any]]:
    """Return copies of ``args``/``kwargs`` with only the callback swapped."""
    if invocation.callback_slot is None:
        return args, kwargs
    if isinstance(invocation.callback_slot, str):
        new_kwargs = dict(kwargs)
        new_kwargs[invocation.callback_slot] = callback
        return args, new_kwargs
    new_args = list(args)
    new_args[invocation.callback_slot] = callback
    return tuple(new_args), kwargs


def subsegment_name(client: Any) -> str:
    return f"{getattr(client, 'database', None)}@{getattr(client, 'host', None)}"


def create_sql_data(connection_parameters: Any) -> SqlData:
    user = get_connection_attribute(connection_parameters, "user")
    host = get_connection_attribute(connection_parameters, "host")
    port = get_connection_attribute(connection_parameters, "port")
    database = get_connection_attribute(connection_parameters, "database")
    return SqlData(
        None,
        None,
        user,
        f"{host}:{port}/{database}",
        None,
    )


def connection_span_attributes(
    database_system: str, connection_parameters: Any
) -> dict[str, Any]:
    """Span attributes describing the connection, skipping unknown values."""
    attributes = {SpanAttributes.DB_SYSTEM: database_system}
    for key, name in (
        (SpanAttributes.DB_NAME, "database"),
        (SpanAttributes.NET_PEER_NAME, "host"),
    ):
        value = get_connection_attribute(connection_parameters, name)
        if value is not None:
            attributes[key] = str(value)
    port = get_connection_attribute(connection_parameters, "port")
    if port is not None:
        try:
            attributes[SpanAttributes.NET_PEER_PORT] = int(port)
        except (TypeError, ValueError):
            attributes[SpanAttributes.NET_PEER_PORT] = str(port)
    return attributes
