import dataclasses
import functools
import logging
import sys

import click.testing
import pytest

import steward

from steward.cli import main

SCRIPT1 = """
import steward

APP = steward.GVK('example.com', 'v1', 'App')

@steward.get_default_router().handle(APP).handler
def deploy_fn(request, response):
    print('Hello from deploy_fn!')
"""

SCRIPT2 = """
import steward

CONFIGMAP = steward.GVK('', 'v1', 'ConfigMap')

@steward.get_default_router().handle(CONFIGMAP).finalize('example.com/cleanup')
def cleanup_fn(request, response):
    print('Hello from cleanup_fn!')
"""


@pytest.fixture(autouse=True)
def srcdir(tmp_path, monkeypatch):
    (tmp_path / 'handler1.py').write_text(SCRIPT1)
    (tmp_path / 'handler2.py').write_text(SCRIPT2)
    pkgdir = tmp_path / 'package'
    pkgdir.mkdir()
    (pkgdir / '__init__.py').write_text('')
    (pkgdir / 'module_1.py').write_text(SCRIPT1)
    (pkgdir / 'module_2.py').write_text(SCRIPT2)

    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.chdir(tmp_path)
    yield tmp_path


@pytest.fixture(autouse=True)
def clean_modules_cache():
    # Otherwise, the first loaded test-modules remain there forever,
    # preventing 2nd and further tests from passing.
    for key in list(sys.modules.keys()):
        if key.startswith('package') or key.startswith('__steward_script_'):
            del sys.modules[key]


@pytest.fixture(autouse=True)
def restore_root_logger():
    # The CLI reconfigures the root logger; other tests should not see it.
    root = logging.getLogger()
    lowlevel = logging.getLogger('asyncio')
    handlers, level = root.handlers[:], root.level
    lowlevel_handlers, propagate = lowlevel.handlers[:], lowlevel.propagate
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    lowlevel.handlers[:] = lowlevel_handlers
    lowlevel.propagate = propagate


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner):
    return functools.partial(runner.invoke, main)


@pytest.fixture()
def preload(mocker):
    return mocker.patch('steward._cogs.helpers.loaders.preload')


@pytest.fixture()
def real_run(mocker):
    return mocker.patch('steward._core.reactor.running.run')


@pytest.fixture(autouse=True)
def restore_default_router():
    # The CLI options are applied to the shared default router.
    router = steward.get_default_router()
    name, peering = router.name, dataclasses.replace(router.settings.peering)
    yield
    router.name = name
    router.settings.peering = peering
