"""
Module- and file-loading to trigger the routes to be registered.

The routes are usually registered on import, against the default router
(see :func:`steward.get_default_router`), so the files/modules with them
should be loaded before the router is started.

Two loading modes are supported, both are equivalent to Python CLI:

* Plain files files (`steward run file.py`).
* Importable modules (`steward run -m pkg.mod`).

Multiple files/modules can be specified. They will be loaded in the order.
"""
import importlib
import importlib.abc
import importlib.util
import os.path
import sys
from collections.abc import Iterable
from typing import cast


def preload(
        paths: Iterable[str],
        modules: Iterable[str],
) -> None:
    """
    Ensure the routes are registered by loading/importing the files/modules.
    """

    for idx, path in enumerate(paths):
        sys.path.insert(0, os.path.abspath(os.path.dirname(path)))
        name = f'__steward_script_{idx}__{path}'  # same pseudo-name as '__main__'
        spec = importlib.util.spec_from_file_location(name, path)
        module = importlib.util.module_from_spec(spec) if spec is not None else None
        loader = cast(importlib.abc.Loader, spec.loader) if spec is not None else None
        if module is not None and loader is not None:
            sys.modules[name] = module
            loader.exec_module(module)
        else:
            raise ImportError(f"Failed loading {path}: no module or loader.")

    for name in modules:
        importlib.import_module(name)
