"""
Helper tools to test the steward-based controllers.

This module is a part of the framework's public interface.
"""
from steward._kits.harness import Harness, HarnessMismatch, read_objects
from steward._kits.memory import Call, MemoryStore

__all__ = [
    'Call',
    'Harness',
    'HarnessMismatch',
    'MemoryStore',
    'read_objects',
]
