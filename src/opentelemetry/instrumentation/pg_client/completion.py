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
Completion channels of a traced query.

A query reports completion through exactly one of three channels: the
callback given by the caller, ``end``/``error`` events on the returned query
object, or an awaitable that settles once the driver queued the real query
object. Each adapter closes the subsegment through a shared
:class:`SubsegmentCloser`, so a subsegment is never closed twice.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import inspect
from typing import Any, Awaitable, Callable, Optional

from opentelemetry.instrumentation.pg_client.segments import Subsegment
from opentelemetry.instrumentation.pg_client.util import QueryInvocation


class Channel(enum.Enum):
    CALLBACK = "callback"
    EVENTS = "events"
    AWAITABLE = "awaitable"


def select_channel(
    invocation: QueryInvocation, result: Any
) -> Optional[Channel]:
    if invocation.callback is not None:
        return Channel.CALLBACK
    if inspect.isawaitable(result):
        return Channel.AWAITABLE
    if callable(getattr(result, "on", None)):
        return Channel.EVENTS
    return None


class SubsegmentCloser:
    """Closes a subsegment on the first call and ignores the rest."""

    def __init__(self, subsegment: Subsegment):
        self._subsegment = subsegment
        self._closed = False

    def __call__(self, error: Any = None) -> None:
        if self._closed:
            return
        self._closed = True
        if error is None:
            self._subsegment.close()
        else:
            self._subsegment.close(error)


def wrap_callback(
    callback: Callable[..., Any], closer: SubsegmentCloser
) -> Callable[..., Any]:
    @functools.wraps(callback)
    def traced_callback(*args, **kwargs):
        error = args[0] if args else None
        closer(error or None)
        return callback(*args, **kwargs)

    return traced_callback


def listen_for_completion(query: Any, closer: SubsegmentCloser) -> None:
    """Close the subsegment on the ``end`` or ``error`` event of ``query``."""

    def on_end(*args, **kwargs):  # pylint: disable=unused-argument
        closer()

    def on_error(error, *args, **kwargs):  # pylint: disable=unused-argument
        closer(error)
        if not _tracks_listeners(query):
            # This listener would count as a handler, so raise the error
            # the emitter would have raised without it.
            if isinstance(error, BaseException):
                raise error
            raise RuntimeError(error)
        # With nobody else listening, hand the error back to the emitter so
        # its unhandled error behavior still applies.
        if list(query.listeners("error")) == [on_error]:
            query.remove_listener("error", on_error)
            query.emit("error", error)

    query.on("end", on_end)
    query.on("error", on_error)


def _tracks_listeners(query: Any) -> bool:
    return callable(getattr(query, "listeners", None)) and callable(
        getattr(query, "remove_listener", None)
    )


def find_queued_query(client: Any) -> Any:
    """The query object the driver queued last, if any."""
    queue = getattr(client, "query_queue", None)
    if not queue:
        return None
    for query in reversed(list(queue)):
        if query is not None:
            return query
    return None


def _on_settled(client: Any, closer: SubsegmentCloser, error: Any) -> None:
    if error is not None:
        closer(error)
        return
    query = find_queued_query(client)
    if query is None or not callable(getattr(query, "on", None)):
        closer()
        return
    listen_for_completion(query, closer)


def track_awaitable(
    result: Awaitable[Any], client: Any, closer: SubsegmentCloser
) -> Awaitable[Any]:
    """Close the subsegment once ``result`` settles.

    Futures are returned unchanged with a done callback attached; any other
    awaitable is wrapped in a coroutine that returns the same result.
    """
    if asyncio.isfuture(result):

        def _done(future):
            if future.cancelled():
                _on_settled(client, closer, asyncio.CancelledError())
            else:
                _on_settled(client, closer, future.exception())

        result.add_done_callback(_done)
        return result

    async def _traced_awaitable():
        try:
            value = await result
        except (Exception, asyncio.CancelledError) as exc:
            _on_settled(client, closer, exc)
            raise
        _on_settled(client, closer, None)
        return value

    return _traced_awaitable()
