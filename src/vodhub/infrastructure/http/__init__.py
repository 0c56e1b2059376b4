from __future__ import annotations

from .invoker import ResilientInvoker

__all__ = ["ResilientInvoker"]
