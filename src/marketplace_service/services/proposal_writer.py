"""AI-assisted bid proposal drafting."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import openai

from marketplace_service.core.exceptions import AuthorizationError, ValidationError
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from marketplace_service.clients.identity_client import Principal
    from marketplace_service.clients.llm_client import LLMClient

SYSTEM_PROMPT = (
    "You are an expert freelance proposal writer. Write concise, professional "
    "proposals that address the client's needs directly, highlight relevant "
    "skills, and end with a clear next step. Do not invent credentials. "
    "Respond with the proposal text only."
)

QUOTA_EXCEEDED_MESSAGE = (
    "AI service quota exceeded. Please try again later or write your proposal manually."
)
CONFIGURATION_ERROR_MESSAGE = "AI service configuration error. Please contact support."
BUSY_MESSAGE = (
    "AI service is busy. Please try again in a moment or write your proposal manually."
)
TIMEOUT_MESSAGE = (
    "AI service request timed out. Please try again or write your proposal manually."
)
UNAVAILABLE_MESSAGE = (
    "Couldn't connect to AI service. Please try again later or write your proposal manually."
)


def build_user_prompt(
    job_title: str,
    job_description: str,
    skills: list[str],
    current_proposal: str | None,
) -> str:
    """Compose the user prompt for a proposal request."""
    lines = [
        f"Job title: {job_title}",
        f"Job description: {job_description}",
    ]
    if skills:
        lines.append(f"Required skills: {', '.join(skills)}")
    if current_proposal:
        lines.append("")
        lines.append("Improve this draft proposal, keeping its intent:")
        lines.append(current_proposal)
    else:
        lines.append("")
        lines.append("Write a proposal for this job.")
    return "\n".join(lines)


def _fallback_message(exc: Exception) -> str:
    """Map an LLM failure to the message shown in place of a proposal."""
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return QUOTA_EXCEEDED_MESSAGE
        return BUSY_MESSAGE
    if isinstance(exc, openai.AuthenticationError | openai.PermissionDeniedError):
        return CONFIGURATION_ERROR_MESSAGE
    if isinstance(exc, openai.APITimeoutError):
        return TIMEOUT_MESSAGE
    return UNAVAILABLE_MESSAGE


class ProposalWriter:
    """
    Drafts or improves a bid proposal with an LLM.

    Failures never surface as errors: the caller receives a human-readable
    fallback in place of the proposal and can write one manually.
    """

    def __init__(self, llm_client: LLMClient | None = None) -> None:
        self._llm_client = llm_client
        self._logger = get_logger(__name__)

    def set_llm_client(self, llm_client: LLMClient) -> None:
        """Replace the LLM client."""
        self._llm_client = llm_client

    async def generate_proposal(
        self,
        principal: Principal,
        job_title: object,
        job_description: object,
        skills: object = None,
        current_proposal: object = None,
    ) -> dict[str, Any]:
        """Return ``{"proposal", "original_proposal"}`` for a freelancer."""
        if not principal.is_freelancer:
            raise AuthorizationError("Only freelancers can generate proposals")
        if not isinstance(job_title, str) or not job_title.strip():
            raise ValidationError("job_title is required")
        if not isinstance(job_description, str) or not job_description.strip():
            raise ValidationError("job_description is required")
        if skills is None:
            skills = []
        if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
            raise ValidationError("skills must be a list of strings")
        if current_proposal is not None and not isinstance(current_proposal, str):
            raise ValidationError("current_proposal must be a string")

        original = current_proposal or None
        if self._llm_client is None:
            self._logger.warning("Proposal requested but AI is not configured")
            return {"proposal": CONFIGURATION_ERROR_MESSAGE, "original_proposal": original}

        prompt = build_user_prompt(job_title, job_description, skills, original)
        try:
            response = await self._llm_client.complete(SYSTEM_PROMPT, prompt)
        except (openai.OpenAIError, RuntimeError) as exc:
            self._logger.warning(
                "Proposal generation failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            return {"proposal": _fallback_message(exc), "original_proposal": original}

        self._logger.info(
            "Proposal generated",
            extra={
                "freelancer_id": principal.user_id,
                "improved": original is not None,
                "finish_reason": response.finish_reason,
            },
        )
        return {"proposal": response.content, "original_proposal": original}
