"""Unit tests for ProposalWriter."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from marketplace_service.clients.identity_client import Principal
from marketplace_service.clients.llm_client import LLMResponse
from marketplace_service.core.exceptions import AuthorizationError, ValidationError
from marketplace_service.services.proposal_writer import (
    BUSY_MESSAGE,
    CONFIGURATION_ERROR_MESSAGE,
    QUOTA_EXCEEDED_MESSAGE,
    TIMEOUT_MESSAGE,
    UNAVAILABLE_MESSAGE,
    ProposalWriter,
    build_user_prompt,
)

FREELANCER = Principal(user_id="u-freelancer", role="freelancer")
CLIENT = Principal(user_id="u-client", role="client")

_REQUEST = httpx.Request("POST", "https://llm.test/v1/chat/completions")


def _status_error(cls: type[openai.APIStatusError], status: int, body: dict | None = None):
    return cls("failed", response=httpx.Response(status, request=_REQUEST), body=body)


def _writer_raising(exc: Exception) -> ProposalWriter:
    llm = AsyncMock()
    llm.complete = AsyncMock(side_effect=exc)
    return ProposalWriter(llm)


@pytest.mark.unit
async def test_generate_proposal_returns_llm_text() -> None:
    """The LLM output becomes the proposal."""
    llm = AsyncMock()
    llm.complete = AsyncMock(return_value=LLMResponse(content="Dear client", finish_reason="stop"))
    writer = ProposalWriter(llm)

    result = await writer.generate_proposal(FREELANCER, "Site", "Build a site", ["css"], None)

    assert result == {"proposal": "Dear client", "original_proposal": None}
    _system, user_prompt = llm.complete.await_args.args
    assert "Job title: Site" in user_prompt
    assert "Required skills: css" in user_prompt


@pytest.mark.unit
async def test_generate_proposal_keeps_original_draft() -> None:
    """Improving a draft returns the draft alongside the new text."""
    llm = AsyncMock()
    llm.complete = AsyncMock(return_value=LLMResponse(content="Better", finish_reason="stop"))
    writer = ProposalWriter(llm)

    result = await writer.generate_proposal(FREELANCER, "Site", "Build", None, "my draft")

    assert result == {"proposal": "Better", "original_proposal": "my draft"}


@pytest.mark.unit
def test_build_user_prompt_mentions_draft() -> None:
    """A draft switches the prompt to improvement mode."""
    prompt = build_user_prompt("Site", "Build", [], "draft text")
    assert "Improve this draft" in prompt
    assert prompt.endswith("draft text")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (
            _status_error(openai.RateLimitError, 429, {"code": "insufficient_quota"}),
            QUOTA_EXCEEDED_MESSAGE,
        ),
        (_status_error(openai.RateLimitError, 429), BUSY_MESSAGE),
        (_status_error(openai.AuthenticationError, 401), CONFIGURATION_ERROR_MESSAGE),
        (openai.APITimeoutError(request=_REQUEST), TIMEOUT_MESSAGE),
        (openai.APIConnectionError(request=_REQUEST), UNAVAILABLE_MESSAGE),
        (RuntimeError("LLM returned empty content"), UNAVAILABLE_MESSAGE),
    ],
)
async def test_generate_proposal_fallbacks(exc: Exception, expected: str) -> None:
    """LLM failures degrade to a readable fallback instead of an error."""
    writer = _writer_raising(exc)

    result = await writer.generate_proposal(FREELANCER, "Site", "Build", [], "draft")

    assert result == {"proposal": expected, "original_proposal": "draft"}


@pytest.mark.unit
async def test_generate_proposal_without_llm() -> None:
    """An unconfigured writer answers with the configuration fallback."""
    writer = ProposalWriter()

    result = await writer.generate_proposal(FREELANCER, "Site", "Build")

    assert result["proposal"] == CONFIGURATION_ERROR_MESSAGE


@pytest.mark.unit
async def test_set_llm_client_replaces_client() -> None:
    """set_llm_client wires a client in after construction."""
    writer = ProposalWriter()
    llm = AsyncMock()
    llm.complete = AsyncMock(return_value=LLMResponse(content="Hi", finish_reason="stop"))

    writer.set_llm_client(llm)

    assert (await writer.generate_proposal(FREELANCER, "Site", "Build"))["proposal"] == "Hi"


@pytest.mark.unit
async def test_generate_proposal_freelancer_only() -> None:
    """Clients do not write proposals."""
    with pytest.raises(AuthorizationError):
        await ProposalWriter().generate_proposal(CLIENT, "Site", "Build")


@pytest.mark.unit
@pytest.mark.parametrize(("title", "description"), [("", "Build"), ("Site", None), (3, "x")])
async def test_generate_proposal_requires_title_and_description(title, description) -> None:
    """Title and description are required."""
    with pytest.raises(ValidationError):
        await ProposalWriter().generate_proposal(FREELANCER, title, description)
