from .openai_adapter import ChatMessages, OpenAIClient

__all__ = ["ChatMessages", "OpenAIClient"]
