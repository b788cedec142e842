from .base import ModelGateway, TokenSink
from .factory import get_gateway

__all__ = ["ModelGateway", "TokenSink", "get_gateway"]
