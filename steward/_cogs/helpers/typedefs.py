"""
Rudimentary type [re-]definitions for Python & mypy.

Some stdlib types are generics in the type-sheds, but not at runtime
(e.g. asyncio.Task, asyncio.Future, logging.LoggerAdapter).

This modules defines them in a most suitable and reusable way. Plus it adds
some common plain type definitions used across the codebase (for convenience).
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# As publicly exposed: we only promise that it is based on one of the built-in loggable classes.
Logger = Union[logging.Logger, LoggerAdapter]
