# ride_dispatch/core/dispatch/__init__.py
from ride_dispatch.core.dispatch.engine import DispatchEngine

__all__ = ["DispatchEngine"]
