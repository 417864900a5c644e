"""
deferdb - Deferred-transaction row dispatch for relational databases.

Everything public lives in ``deferdb.core`` and is re-exported here.
"""

__version__ = "0.1.0"

from deferdb.core import *  # noqa
from deferdb.core import __all__ as _core_all

__all__ = ["__version__", *_core_all]
