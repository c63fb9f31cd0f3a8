"""
All the functions to manipulate the object finalization and deletion.

Finalizers are used to block the actual deletion until the finalizers
are removed, meaning that the controller has done all its duties
to "release" the object (e.g. cleanups of the external resources).

Multiple finalizers of the same object are released strictly in the order
of the list: only the finalizer at the head of the list is "on duty".
"""
from collections.abc import Mapping
from typing import Any

from steward._cogs.structs import bodies


def is_deletion_ongoing(
        body: Mapping[str, Any],
) -> bool:
    return body.get('metadata', {}).get('deletionTimestamp', None) is not None


def is_deletion_blocked(
        body: Mapping[str, Any],
        finalizer: str,
) -> bool:
    finalizers = body.get('metadata', {}).get('finalizers', None) or []
    return finalizer in finalizers


def is_finalizer_on_duty(
        body: Mapping[str, Any],
        finalizer: str,
) -> bool:
    finalizers = body.get('metadata', {}).get('finalizers', None) or []
    return bool(finalizers) and finalizers[0] == finalizer


def block_deletion(body: bodies.Body, finalizer: str) -> None:
    if finalizer not in (body.get('metadata', {}).get('finalizers', None) or []):
        metadata = body.setdefault('metadata', {})
        metadata['finalizers'] = list(metadata.get('finalizers') or []) + [finalizer]


def release_head(body: bodies.Body) -> None:
    finalizers = body.get('metadata', {}).get('finalizers', None) or []
    body['metadata']['finalizers'] = list(finalizers[1:])
