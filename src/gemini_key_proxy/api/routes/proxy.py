"""OpenAI-compatible proxy endpoints."""

from typing import Any

import orjson
import pydantic
from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict, Field, StrictBool
from structlog import get_logger

from gemini_key_proxy.api.dependencies import get_dispatcher_from_request
from gemini_key_proxy.exceptions import ValidationError


logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["proxy"])


class ChatCompletionRequest(BaseModel):
    """The parts of a chat-completion body the proxy looks at.

    Everything else is forwarded untouched.
    """

    model_config = ConfigDict(extra="allow")

    model: str = Field(..., min_length=1)
    stream: StrictBool = False


def parse_chat_completion_body(body: bytes) -> ChatCompletionRequest:
    """Validate a raw request body.

    Raises:
        ValidationError: If the body is not a JSON object with a model
    """
    try:
        data: Any = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON body: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    try:
        return ChatCompletionRequest.model_validate(data)
    except pydantic.ValidationError as e:
        message = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(message) from e


@router.post("/chat/completions", response_model=None)
async def create_chat_completion(request: Request) -> Response:
    """Proxy a chat completion, streaming when the body asks for it.

    The body is forwarded byte for byte; the proxy only checks that it names
    a model and reads the ``stream`` flag.
    """
    dispatcher = get_dispatcher_from_request(request)
    body = await request.body()
    completion_request = parse_chat_completion_body(body)

    logger.debug(
        "chat_completion_request",
        model=completion_request.model,
        stream=completion_request.stream,
    )
    return await dispatcher.proxy(body, wants_streaming=completion_request.stream)


@router.get("/models", response_model=None)
async def list_models(request: Request) -> Response:
    """Proxy the upstream model list."""
    dispatcher = get_dispatcher_from_request(request)
    return await dispatcher.list_models()
