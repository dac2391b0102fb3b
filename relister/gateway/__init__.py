"""Remote function gateway and the typed procedures built on top of it."""

from relister.gateway.client import FunctionGateway
from relister.gateway.procedures import RemoteProcedures

__all__ = ["FunctionGateway", "RemoteProcedures"]
