"""
AWS Bedrock runtime client factory and error translation.

Shared by the embedding and completion providers.
"""

import asyncio
import json
from typing import Any

from services.shared.config import Settings
from services.shared.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitedError,
)
from services.shared.logging import get_logger

logger = get_logger(__name__)

THROTTLING_CODES = frozenset(
    {
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceQuotaExceededException",
    }
)

TRANSIENT_CODES = frozenset(
    {
        "InternalServerException",
        "ServiceUnavailableException",
        "ModelNotReadyException",
        "ModelTimeoutException",
    }
)


def create_bedrock_client(settings: Settings, timeout: float | None = None) -> Any:
    """
    Create a bedrock-runtime client.

    botocore's built-in retries are disabled; callers wrap invocations in
    services.shared.retry so there is a single retry layer.
    """
    import boto3
    from botocore.config import Config

    read_timeout = timeout if timeout is not None else settings.provider_timeout_seconds

    kwargs: dict[str, Any] = {
        "service_name": "bedrock-runtime",
        "region_name": settings.aws_region,
        "config": Config(
            connect_timeout=settings.provider_timeout_seconds,
            read_timeout=read_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        ),
    }

    if settings.aws_endpoint_url:
        kwargs["endpoint_url"] = settings.aws_endpoint_url

    if settings.aws_access_key_id and settings.aws_secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

    return boto3.client(**kwargs)


async def invoke_model(
    client: Any,
    model_id: str,
    body: dict[str, Any],
    operation: str,
) -> dict[str, Any]:
    """
    Invoke a Bedrock model off the event loop and decode its JSON response.

    Raises:
        Taxonomy errors produced by translate_bedrock_error.
    """
    try:
        response = await asyncio.to_thread(
            client.invoke_model,
            modelId=model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        return json.loads(response["body"].read())
    except Exception as e:
        translated = translate_bedrock_error(e, operation)
        if translated is e:
            raise
        logger.warning(
            "bedrock_invoke_failed",
            operation=operation,
            model=model_id,
            error=str(e),
            error_type=type(translated).__name__,
        )
        raise translated from e


def translate_bedrock_error(error: Exception, operation: str) -> Exception:
    """
    Map a boto/botocore exception onto the assistant's error taxonomy.

    Errors that are already part of the taxonomy are returned unchanged.
    """
    from botocore.exceptions import (
        BotoCoreError,
        ClientError,
        ConnectionError as BotoConnectionError,
        NoCredentialsError,
        PartialCredentialsError,
        ReadTimeoutError,
        ConnectTimeoutError,
    )

    if isinstance(error, ProviderError | ConfigurationError):
        return error

    if isinstance(error, NoCredentialsError | PartialCredentialsError):
        return ConfigurationError(f"{operation}: AWS credentials are not configured")

    if isinstance(error, ReadTimeoutError | ConnectTimeoutError):
        return ProviderUnavailableError(f"{operation}: request timed out", status_code=504)

    if isinstance(error, BotoConnectionError):
        return ProviderUnavailableError(f"{operation}: Bedrock endpoint unreachable")

    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        message = error.response.get("Error", {}).get("Message", str(error))
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if code in THROTTLING_CODES or status == 429:
            return RateLimitedError(
                f"{operation}: Bedrock rate limit exceeded", status_code=429
            )
        if code in TRANSIENT_CODES or (status is not None and status >= 500):
            return ProviderUnavailableError(
                f"{operation}: Bedrock service temporarily unavailable",
                status_code=status or 503,
                details={"code": code},
            )
        return ProviderError(
            f"{operation}: {message}",
            status_code=status,
            details={"code": code},
        )

    if isinstance(error, BotoCoreError):
        return ProviderUnavailableError(f"{operation}: {error}")

    return error
