"""
A harness to test the handlers without a cluster.

The handler is invoked once against an in-memory store with the pre-existing
objects, and the objects it emits are compared to the expected ones.
The harness can be described by a directory of YAML files:

* ``input.yaml`` -- exactly one object to process;
* ``existing.yaml`` -- the objects that exist in the store beforehand;
* ``expected.yaml`` -- the objects the handler must emit.

Each file can be accompanied (or replaced) by a directory with the same name
and a ``.d`` suffix, with multiple ``*.yaml`` files in it.
"""
import copy
import dataclasses
import os
from collections.abc import Iterable, Mapping
from typing import Any

import yaml

from steward._cogs.configs import configuration
from steward._cogs.structs import bodies, references
from steward._core.actions import invocation, loggers
from steward._core.reactor import handlers, requests, triggers
from steward._kits import memory

# Changes on every run, so cannot be expected.
IGNORED_FIELDS = frozenset({'lastTransitionTime'})


class HarnessMismatch(AssertionError):
    """ The handler's results are not as expected. """


@dataclasses.dataclass
class Harness:
    existing: list[bodies.Body] = dataclasses.field(default_factory=list)
    expected_output: list[bodies.Body] = dataclasses.field(default_factory=list)
    expected_delay: float = 0
    settings: configuration.OperatorSettings = dataclasses.field(
        default_factory=configuration.OperatorSettings)

    @classmethod
    def from_dir(cls, path: str) -> tuple["Harness", bodies.Body]:
        inputs = read_objects(path, 'input.yaml')
        if len(inputs) != 1:
            raise ValueError(f"{os.path.join(path, 'input.yaml')} does not include one input object.")
        harness = cls(
            existing=read_objects(path, 'existing.yaml'),
            expected_output=read_objects(path, 'expected.yaml'),
        )
        return harness, inputs[0]

    def request(self, input: Mapping[str, Any]) -> tuple[requests.Request, requests.Response]:
        """ Build a request & a response for the object, as the dispatcher would do. """
        store = memory.MemoryStore(*self.existing, copy.deepcopy(input))
        gvk = references.GVK.for_body(input)
        key = references.ObjectKey.for_body(input)
        registry = requests.TriggerRegistry(triggers.Triggers(), gvk, key)
        request = requests.Request(
            gvk=gvk,
            key=key,
            object=dict(input),
            client=requests.ScopedClient(store, registry),
            settings=self.settings,
            logger=loggers.ObjectLogger(gvk=gvk, key=key, body=input),
            saver=_keep,
        )
        return request, requests.Response(registry=registry)

    async def invoke(self, input: Mapping[str, Any], handler: handlers.Handler) -> requests.Response:
        """
        Invoke the handler with the object, and check its results.

        The handler's errors are propagated as is. The mismatches of the results
        are raised as :class:`HarnessMismatch` (an ``AssertionError``).
        """
        request, response = self.request(input)
        await invocation.invoke(handler, request, response)

        if response.delay != self.expected_delay:
            raise HarnessMismatch(f"Expected delay {self.expected_delay}, got {response.delay}.")
        if not self.expected_output:
            return response

        expected = _by_identity(self.expected_output)
        collected = _by_identity(response.collected)
        for identity in collected.keys() - expected.keys():
            raise HarnessMismatch(f"Unexpected object {_describe(identity)}.")
        for identity in expected.keys() - collected.keys():
            raise HarnessMismatch(f"Missing expected object {_describe(identity)}.")
        for identity, body in expected.items():
            if _strip(body) != _strip(collected[identity]):
                left = yaml.safe_dump(_strip(body), sort_keys=True)
                right = yaml.safe_dump(_strip(collected[identity]), sort_keys=True)
                raise HarnessMismatch(f"Object {_describe(identity)} does not match:\n"
                                      f"--- expected\n{left}--- collected\n{right}")
        return response


def read_objects(path: str, filename: str) -> list[bodies.Body]:
    """ Read all the objects from a YAML file and its ``.d`` directory, if any. """
    filepath = os.path.join(path, filename)
    objs: list[bodies.Body] = []
    dirpath = filepath + '.d'
    if os.path.isdir(dirpath):
        for name in sorted(os.listdir(dirpath)):
            if name.endswith('.yaml') and not os.path.isdir(os.path.join(dirpath, name)):
                objs.extend(read_objects(dirpath, name))
    if os.path.exists(filepath):
        with open(filepath, encoding='utf-8') as f:
            objs.extend(doc for doc in yaml.safe_load_all(f) if doc)
    return objs


async def _keep(
        unmodified: bodies.Body | None,
        request: requests.Request,
        response: requests.Response,
) -> bodies.Body | None:
    return request.object


Identity = tuple[references.GVK, str, str]


def _by_identity(objs: Iterable[Mapping[str, Any]]) -> dict[Identity, Mapping[str, Any]]:
    return {
        (references.GVK.for_body(obj), bodies.get_namespace(obj), bodies.get_name(obj)): obj
        for obj in objs
    }


def _describe(identity: Identity) -> str:
    gvk, namespace, name = identity
    return f"{namespace}/{name} ({gvk})" if namespace else f"{name} ({gvk})"


def _strip(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _strip(val) for key, val in value.items() if key not in IGNORED_FIELDS}
    if isinstance(value, list):
        return [_strip(item) for item in value]
    return value
