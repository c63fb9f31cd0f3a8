"""
The finalizers: the handlers that must run before the object is deleted.

Every finalizing route puts its token to the object's finalizers while
the object exists, so that the deletion is blocked until the token is removed.
When the object is being deleted, the finalizers are released strictly
in their order: only the route whose token is at the head of the list
runs its handler; the others wait for their turn.

The handler of the finalizer can request a delay: then, the token stays
in place, and the handler is retried later. Otherwise, the token is removed
right after the handler succeeds, and the next finalizer comes into effect.
"""
import copy
import dataclasses

from steward._cogs.structs import bodies, finalizers
from steward._core.actions import invocation
from steward._core.reactor import handlers, requests


class FinalizerHandler:

    def __init__(self, token: str, next: handlers.Handler) -> None:
        super().__init__()
        self.token = token
        self.next = next

    async def __call__(self, request: requests.Request, response: requests.Response) -> None:
        obj = request.object
        if obj is None:
            return

        if not finalizers.is_deletion_ongoing(obj):
            if not finalizers.is_deletion_blocked(obj, self.token):
                body = copy.deepcopy(obj)
                finalizers.block_deletion(body, self.token)
                request.logger.debug(f"Adding the finalizer {self.token!r}.")
                request.object = await request.client.update(body)
            await invocation.invoke(self.next, request, response)
            return

        if not finalizers.is_finalizer_on_duty(obj, self.token):
            return

        sub_request = dataclasses.replace(request, object=copy.deepcopy(obj))
        sub_response = requests.Response(registry=response.registry)
        await invocation.invoke(self.next, sub_request, sub_response)
        saved = await request.saver(obj, sub_request, sub_response)

        if sub_response.delay:
            response.retry_after(sub_response.delay)
            return

        body = copy.deepcopy(saved if saved is not None else obj)
        if bodies.get_finalizers(body)[:1] == [self.token]:
            finalizers.release_head(body)
            request.logger.debug(f"Removing the finalizer {self.token!r}.")
            request.object = await request.client.update(body)
