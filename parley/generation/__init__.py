"""Language-model backend."""

from parley.generation.client import AnthropicGenerator

__all__ = ["AnthropicGenerator"]
