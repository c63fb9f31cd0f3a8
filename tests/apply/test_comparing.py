import pytest

from steward._cogs.structs.patches import PatchType
from steward._cogs.structs.references import GVK
from steward._core.apply.comparing import create_patch, empty_maps, sanitize_patch
from steward._core.apply.ownership import AnnotationKeys

KEYS = AnnotationKeys('apply.acorn.io/')


@pytest.mark.parametrize('data, keys, expected', [
    ({}, ('metadata', 'annotations'), True),
    ({'metadata': {}}, ('metadata', 'annotations'), True),
    ({'metadata': {'annotations': {}}}, ('metadata', 'annotations'), True),
    ({'metadata': {'annotations': {'a': 'b'}}}, ('metadata', 'annotations'), False),
    ({'metadata': {'labels': {}}}, ('metadata', 'annotations'), False),
    ({'metadata': {'annotations': {}}, 'spec': {}}, ('metadata', 'annotations'), False),
    ({'metadata': {'annotations': {'x': 'snapshot'}}}, ('metadata', 'annotations', 'x'), True),
])
def test_empty_maps(data, keys, expected):
    assert empty_maps(data, *keys) is expected


def test_unpatchable_fields_are_removed():
    patch = {'kind': 'X', 'apiVersion': 'v1', 'status': {}, 'spec': {'a': 1},
             'metadata': {'uid': 'u', 'resourceVersion': '1', 'labels': {'a': 'b'}}}
    assert sanitize_patch(patch, KEYS) == {'spec': {'a': 1}, 'metadata': {'labels': {'a': 'b'}}}


def test_snapshot_only_patches_are_empty():
    patch = {'metadata': {'annotations': {'apply.acorn.io/applied': 'xyz'}}, 'status': {'x': 1}}
    assert sanitize_patch(patch, KEYS) == {}


def test_given_patches_are_not_modified():
    patch = {'metadata': {'uid': 'u', 'labels': {}}}
    sanitize_patch(patch, KEYS)
    assert patch == {'metadata': {'uid': 'u', 'labels': {}}}


def test_custom_resources_are_merge_patched():
    patch_type, patch = create_patch(GVK('example.com', 'v1', 'App'), None, {'spec': {'a': 1}}, {})
    assert patch_type == PatchType.MERGE
    assert patch == {'spec': {'a': 1}}


def test_builtin_resources_are_strategically_patched():
    patch_type, patch = create_patch(GVK('', 'v1', 'ConfigMap'), {'data': {'a': '1'}}, {'data': {}}, {'data': {'a': '1'}})
    assert patch_type == PatchType.STRATEGIC
    assert patch == {'data': {'a': None}}
