"""
Detecting the framework's own version.

The codebase does not contain the version directly: releases are made
by tagging, and the version is taken from the installed distribution.

The version is determined only once at startup when the code is loaded.
"""
import importlib.metadata

version: str | None = None

try:
    name, *_ = __name__.split('.')  # usually "steward", unless renamed/forked.
    version = importlib.metadata.version(name)
except importlib.metadata.PackageNotFoundError:
    pass  # running from a source tree without installation.
