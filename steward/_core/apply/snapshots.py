"""
The applied snapshots: the last applied state of an object, stored on the object.

The snapshot is the "original" side of the three-way patches: the fields that
were applied before and are not desired anymore are removed from the objects,
while the fields set by other writers (never applied by us) are kept intact.

The snapshot is stored in an annotation as a compact JSON, gzipped,
and base64-encoded (without padding). To keep it small, the long strings
are truncated to 64 characters plus 8 hex digits of their SHA-256 hash.
The truncation is lossy: such fields are diffed by their truncated values.
The format must not change: the annotations written before are decoded
as the diff bases of the next patches.
"""
import base64
import binascii
import copy
import gzip
import hashlib
import json
import zlib
from collections.abc import Mapping
from typing import Any

from steward._cogs.structs import bodies, references
from steward._core.apply import ownership

MAX_STRING_LENGTH = 64

# The fields of the list items which identify the items (as the merge keys),
# so they are never truncated even if they are long.
KNOWN_LIST_KEYS = frozenset([
    'apiVersion',
    'containerPort',
    'devicePath',
    'ip',
    'kind',
    'mountPath',
    'name',
    'port',
    'topologyKey',
    'type',
])

# The fields maintained by the server, never applied, never diffed.
SYSTEM_METADATA_FIELDS = ('creationTimestamp', 'generation', 'resourceVersion', 'uid', 'managedFields')


def prune_values(data: Mapping[str, Any], is_list_item: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            result[key] = prune_values(value)
        elif isinstance(value, list):
            result[key] = prune_list(value)
        elif is_list_item and key in KNOWN_LIST_KEYS:
            result[key] = value
        elif isinstance(value, str) and len(value.encode('utf-8')) > MAX_STRING_LENGTH:
            result[key] = _truncate(value)
        elif isinstance(value, bytes):
            result[key] = None
        else:
            result[key] = value
    return result


def _truncate(value: str) -> str:
    # The limit is in bytes; a multi-byte character cut in half becomes U+FFFD.
    data = value.encode('utf-8')
    digest = hashlib.sha256(data).hexdigest()
    return data[:MAX_STRING_LENGTH].decode('utf-8', errors='replace') + digest[:8]


def prune_list(items: list[Any]) -> list[Any]:
    result: list[Any] = []
    for item in items:
        if isinstance(item, Mapping):
            result.append(prune_values(item, is_list_item=True))
        elif isinstance(item, list):
            result.append(prune_list(item))
        else:
            result.append(item)
    return result


def serialize(body: Mapping[str, Any]) -> bytes:
    pruned = prune_values(body)
    return json.dumps(pruned, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def encode(data: bytes) -> str:
    compressed = gzip.compress(data, compresslevel=6, mtime=0)
    return base64.b64encode(compressed).decode('ascii').rstrip('=')


def decode(text: str) -> bytes:
    """
    Decode a snapshot; the empty or broken snapshots are decoded as empty.

    Plain JSON is also accepted: for the snapshots written by hand.
    """
    if not text or text.startswith('{'):
        return text.encode('utf-8')
    try:
        padded = text + '=' * (-len(text) % 4)
        return gzip.decompress(base64.b64decode(padded, validate=True))
    except (binascii.Error, OSError, EOFError, zlib.error, ValueError):
        return b''


def remove_metadata_fields(body: bodies.Body) -> bool:
    metadata = body.get('metadata')
    if not isinstance(metadata, dict):
        return False
    removed = False
    for field in SYSTEM_METADATA_FIELDS:
        if field in metadata:
            del metadata[field]
            removed = True
    return removed


def prepare_for_create(
        gvk: references.GVK,
        body: bodies.Body,
        keys: ownership.AnnotationKeys,
        *,
        clone: bool = True,
) -> bodies.Body:
    """
    Stash the object's own snapshot into its annotations; make the type explicit.
    """
    snapshot = encode(serialize(body))
    if clone:
        body = copy.deepcopy(body)
    bodies.set_annotations(body, {keys.applied: snapshot})
    body['apiVersion'] = gvk.api_version
    body['kind'] = gvk.kind
    return body


def get_original(
        gvk: references.GVK,
        body: Mapping[str, Any],
        keys: ownership.AnnotationKeys,
) -> bodies.Body | None:
    """
    Restore the last applied state of an object, if it was applied before.
    """
    data = decode(bodies.get_annotations(body).get(keys.applied, ''))
    if not data:
        return None
    try:
        original = json.loads(data)
    except ValueError:
        return None
    if not isinstance(original, dict):
        return None
    remove_metadata_fields(original)
    return prepare_for_create(gvk, original, keys, clone=False)
