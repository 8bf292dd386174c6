"""AWS Bedrock client wrapper for tool-calling Claude conversations."""

import json
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class BedrockConfig(BaseModel):
    """Bedrock configuration."""
    profile: Optional[str] = None
    region: str = "eu-west-1"
    max_tokens: int = 4096


class BedrockResponse(BaseModel):
    """Response from Bedrock API."""
    content: list[dict[str, Any]]
    stop_reason: str
    usage: dict[str, Any]  # Can contain nested dicts for cache_creation
    model: str


class BedrockClient:
    """AWS Bedrock client for invoking Claude with the Messages API."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Any = None
    ):
        """
        Initialize Bedrock client.

        Args:
            profile: AWS profile name (default: the standard credential chain)
            region: AWS region (default: "eu-west-1")
            max_tokens: Default completion budget per request (default: 4096)
            client: Pre-built bedrock-runtime client (skips session setup)
        """
        self.config = BedrockConfig(
            profile=profile,
            region=region or "eu-west-1",
            max_tokens=max_tokens or 4096
        )

        if client is not None:
            self.client = client
        else:
            session = boto3.Session(
                profile_name=self.config.profile,
                region_name=self.config.region
            )

            # Configure retry strategy
            retry_config = Config(
                region_name=self.config.region,
                retries={
                    'max_attempts': 3,
                    'mode': 'adaptive'
                }
            )

            self.client = session.client(
                service_name='bedrock-runtime',
                config=retry_config
            )

        logger.info(
            f"Initialized Bedrock client: profile={self.config.profile}, "
            f"region={self.config.region}"
        )

    def create_message(
        self,
        model_id: str,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str] = None,
        tools: Optional[list[dict[str, Any]]] = None,
        max_tokens: Optional[int] = None
    ) -> BedrockResponse:
        """
        Send a full conversation to Claude and return its next message.

        Args:
            model_id: Bedrock model or inference profile ID
            messages: Conversation history in Anthropic Messages format
            system_prompt: Optional system prompt
            tools: Tool definitions (name, description, input_schema)
            max_tokens: Maximum tokens to generate (default: config.max_tokens)

        Returns:
            BedrockResponse with content blocks and stop reason

        Raises:
            BedrockInvocationError: If API call fails
        """
        request_body: dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "messages": messages,
            "max_tokens": max_tokens or self.config.max_tokens,
        }

        if system_prompt:
            request_body["system"] = system_prompt
        if tools:
            request_body["tools"] = tools

        logger.debug(
            f"Invoking model: {model_id} "
            f"(messages={len(messages)}, tools={len(tools or [])}, "
            f"max_tokens={request_body['max_tokens']})"
        )

        try:
            response = self.client.invoke_model(
                modelId=model_id,
                body=json.dumps(request_body),
                contentType='application/json',
                accept='application/json'
            )
            response_body = json.loads(response['body'].read())

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Bedrock invocation failed: {e}")
            raise BedrockInvocationError(f"Failed to invoke model: {e}") from e
        except json.JSONDecodeError as e:
            logger.error(f"Bedrock returned malformed JSON: {e}")
            raise BedrockInvocationError(f"Malformed model response: {e}") from e

        logger.info(
            f"Model invocation successful: "
            f"stop_reason={response_body.get('stop_reason')}, "
            f"input_tokens={response_body.get('usage', {}).get('input_tokens')}, "
            f"output_tokens={response_body.get('usage', {}).get('output_tokens')}"
        )

        return BedrockResponse(
            content=response_body.get("content") or [],
            stop_reason=response_body.get("stop_reason") or "",
            usage=response_body.get("usage", {}),
            model=response_body.get("model", model_id)
        )


class BedrockInvocationError(Exception):
    """Raised when Bedrock API invocation fails."""
    pass
