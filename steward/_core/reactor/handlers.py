"""
The handlers and their wrappers.

A handler is a sync or async callable accepting a request and a response.
The routes wrap the handlers into filters, so that the handler is called
only for the objects it is interested in. The wrappers are handlers too,
so they can be stacked in any order, and the operators can add their own
(see the middleware of :class:`routing.RouteBuilder`).
"""
from collections.abc import Callable, Coroutine
from typing import Any

from steward._cogs.structs import bodies, selectors
from steward._core.actions import invocation
from steward._core.reactor import requests

Handler = Callable[[requests.Request, requests.Response], Coroutine[Any, Any, None] | None]
Middleware = Callable[[Handler], Handler]


class HandlerError(Exception):
    """ A handler has failed; the message is prefixed with the route's name. """


class IgnoreRemove:
    """ Skip the objects that are absent or being deleted. """

    def __init__(self, next: Handler) -> None:
        super().__init__()
        self.next = next

    async def __call__(self, request: requests.Request, response: requests.Response) -> None:
        if request.object is None or bodies.is_deleting(request.object):
            return
        await invocation.invoke(self.next, request, response)


class NameNamespaceFilter:

    def __init__(self, next: Handler, *, name: str = '', namespace: str = '') -> None:
        super().__init__()
        self.next = next
        self.name = name
        self.namespace = namespace

    async def __call__(self, request: requests.Request, response: requests.Response) -> None:
        if self.name and request.name != self.name:
            return
        if self.namespace and request.namespace != self.namespace:
            return
        await invocation.invoke(self.next, request, response)


class SelectorFilter:

    def __init__(self, next: Handler, selector: selectors.LabelSelector) -> None:
        super().__init__()
        self.next = next
        self.selector = selector

    async def __call__(self, request: requests.Request, response: requests.Response) -> None:
        if request.object is None or not self.selector.matches(bodies.get_labels(request.object)):
            return
        await invocation.invoke(self.next, request, response)


class FieldSelectorFilter:

    def __init__(self, next: Handler, selector: selectors.FieldSelector) -> None:
        super().__init__()
        self.next = next
        self.selector = selector

    async def __call__(self, request: requests.Request, response: requests.Response) -> None:
        if request.object is None or not self.selector.matches(request.object):
            return
        await invocation.invoke(self.next, request, response)


class ErrorPrefix:

    def __init__(self, next: Handler, prefix: str) -> None:
        super().__init__()
        self.next = next
        self.prefix = prefix

    async def __call__(self, request: requests.Request, response: requests.Response) -> None:
        try:
            await invocation.invoke(self.next, request, response)
        except Exception as e:
            raise HandlerError(f"{self.prefix}{e}") from e
