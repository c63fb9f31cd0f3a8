"""
K8s API errors.

The underlying client library (now, ``aiohttp``) is not exposed to the
controllers' code: neither the handlers nor the apply engine catch its errors.
Hence, we have our own hierarchy of exceptions for K8s API errors,
which is also used by the in-memory store in tests.

Low-level errors, such as the network connectivity issues, SSL/HTTPS issues,
etc, are escalated from the client library as is, since they are related not
to the domain of K8s API, but rather to the networking and encryption.

Some selected reasons of K8s API errors are made into their own classes,
so that they could be intercepted and handled in other places of the framework:
e.g. "not found" is an absent object, "already exists" is an adoption case.
All other reasons are raised as the base error class.
"""
import collections.abc
import json
from collections.abc import Collection
from typing import Any, Literal, TypedDict

import aiohttp


class RawStatusCause(TypedDict):
    field: str
    reason: str
    message: str


class RawStatusDetails(TypedDict, total=False):
    name: str
    uid: str
    retryAfterSeconds: int
    kind: str
    group: str
    causes: Collection[RawStatusCause]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.19/#status-v1-meta
class RawStatus(TypedDict, total=False):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):

    def __init__(
            self,
            payload: RawStatus | None,
            *,
            status: int,
    ) -> None:
        message = payload.get('message') if payload else None
        super().__init__(message, payload)
        self._status = status
        self._payload = payload

    @property
    def status(self) -> int:
        return self._status

    @property
    def code(self) -> int | None:
        return self._payload.get('code') if self._payload else None

    @property
    def reason(self) -> str | None:
        return self._payload.get('reason') if self._payload else None

    @property
    def message(self) -> str | None:
        return self._payload.get('message') if self._payload else None

    @property
    def details(self) -> RawStatusDetails | None:
        return self._payload.get('details') if self._payload else None


class APIUnauthorizedError(APIError):
    pass


class APIForbiddenError(APIError):
    pass


class APINotFoundError(APIError):
    pass


class APIConflictError(APIError):
    pass


class APIAlreadyExistsError(APIConflictError):
    pass


class APIGoneError(APIError):
    pass


class APIServerError(APIError):
    pass


def build_status(status: int, reason: str, message: str, **details: Any) -> RawStatus:
    """
    Build an API-like status payload; used by the stores that are not the API.
    """
    payload: RawStatus = {
        'apiVersion': 'v1',
        'kind': 'Status',
        'status': 'Failure',
        'code': status,
        'reason': reason,
        'message': message,
    }
    if details:
        payload['details'] = details  # type: ignore
    return payload


def classify(status: int, payload: RawStatus | None) -> type[APIError]:
    reason = payload.get('reason') if payload else None
    return (
        APIUnauthorizedError if status == 401 else
        APIForbiddenError if status == 403 else
        APINotFoundError if status == 404 else
        APIAlreadyExistsError if status == 409 and reason == 'AlreadyExists' else
        APIConflictError if status == 409 else
        APIGoneError if status == 410 else
        APIServerError if status >= 500 else
        APIError
    )


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Check for specialised K8s errors, and raise with extended information.
    """
    if response.status >= 400:

        # Read the response's body before it is closed by raise_for_status().
        payload: RawStatus | None
        try:
            payload = await response.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
            payload = None

        # Better be safe: who knows which sensitive information can be dumped unless kind==Status.
        if not isinstance(payload, collections.abc.Mapping) or payload.get('kind') != 'Status':
            payload = None

        cls = classify(response.status, payload)

        # Raise the framework-specific error while keeping the original error in scope.
        # This call also closes the response's body, so it cannot be read afterwards.
        try:
            response.raise_for_status()
        except aiohttp.ClientResponseError as e:
            raise cls(payload, status=response.status) from e


async def parse_response(
        response: aiohttp.ClientResponse,
) -> Any:
    """
    Check the response for errors, and either raise or returned the parsed data.
    """
    await check_response(response)
    payload = await response.json()
    return payload
