"""CDK stacks for the chat gateway."""
from .api_stack import GatewayApiStack
from .base_stack import GatewayBaseStack

__all__ = ["GatewayBaseStack", "GatewayApiStack"]
