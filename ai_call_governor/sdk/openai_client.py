"""
Governed OpenAI client wrapper.

Routes chat completions through the request governor so they are queued,
retried, downgraded on quota exhaustion and recorded like every other call.
"""

from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from ..core.governor import CallMetadata, RequestGovernor


class GovernedOpenAI:
    """OpenAI chat client whose calls go through a RequestGovernor.

    The governor owns retries and fallbacks; this wrapper only builds the
    payload and the call metadata recorded in the ledger.
    """

    def __init__(
        self,
        model: str,
        agent_name: str,
        governor: RequestGovernor,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize governed OpenAI client.

        Args:
            model: OpenAI model name (required)
            agent_name: Agent identifier recorded with each call (required)
            governor: Governor that executes the calls
            client: AsyncOpenAI client (defaults to one built from the environment)

        Raises:
            ValueError: If model or agent_name is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not agent_name or not agent_name.strip():
            raise ValueError("agent_name is required and cannot be empty")

        self.model = model
        self.agent_name = agent_name
        self.governor = governor
        self.client = client or AsyncOpenAI()

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion through the governor.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            GovernedCallError: If the call fails after retries and fallbacks
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **kwargs
        }
        metadata = CallMetadata(
            agent_name=self.agent_name,
            model=self.model,
            request_payload={
                "lastMessage": messages[-1],
                "historyLength": len(messages),
            },
        )
        return await self.governor.enqueue(self._create_completion, payload, metadata)

    async def _create_completion(self, payload: Dict[str, Any]) -> Any:
        return await self.client.chat.completions.create(**payload)
