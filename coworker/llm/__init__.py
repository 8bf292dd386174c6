"""Language model access: Bedrock client, prompts and model selection."""

from coworker.llm.bedrock_client import BedrockClient, BedrockInvocationError, BedrockResponse
from coworker.llm.model_selection import ModelTier, select_model_tier

__all__ = [
    "BedrockClient",
    "BedrockInvocationError",
    "BedrockResponse",
    "ModelTier",
    "select_model_tier",
]
