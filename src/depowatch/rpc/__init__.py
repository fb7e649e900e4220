"""Chain JSON-RPC clients."""

from depowatch.rpc.base import RpcClient, RpcError, RpcTransportError, create_client

__all__ = ["RpcClient", "RpcError", "RpcTransportError", "create_client"]
