"""Abstract base class for provider clients.

Defines the ProviderClient interface the fallback engine calls for every
generation attempt and health probe. The engine never calls vendor SDKs
directly; one client implementation handles the wire format.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from cascade.schemas.context import CallerRequest
from cascade.schemas.execution import GenerationResult
from cascade.schemas.provider import Provider


class ProviderClient(ABC):
    """Performs one generation call against one provider/model."""

    @abstractmethod
    async def generate(
        self,
        provider: Provider,
        request: CallerRequest,
        *,
        timeout: float,
    ) -> GenerationResult:
        """Send ``request`` to ``provider`` and return the generated content.

        The orchestrator additionally bounds the call with the tier timeout,
        so implementations may treat ``timeout`` as advisory.

        Args:
            provider: Catalog entry carrying the model id, endpoint and pricing.
            request: The caller's request, forwarded untouched.
            timeout: Timeout in seconds for the call.

        Returns:
            GenerationResult with content, token counts and USD cost.

        Raises:
            TimeoutError: If the call exceeds the timeout.
            ProviderCallError: If the provider fails at the transport level.
        """

    @staticmethod
    def build_messages(request: CallerRequest) -> list[dict[str, str]]:
        """Render a CallerRequest as OpenAI-format chat messages."""
        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        content = request.prompt
        if request.context:
            content = f"{request.prompt}\n\n{request.context}"
        messages.append({"role": "user", "content": content})
        return messages
