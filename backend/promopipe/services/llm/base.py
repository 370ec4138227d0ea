"""Abstract base class for LLM provider adapters.

Defines the async interface every adapter implements: a prompt plus a
Pydantic schema in, a validated schema instance out.
"""

from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Model identifier this adapter was created for."""
        ...

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        """Generate structured text output from a prompt.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            system_prompt: Optional system/instruction prompt.
            max_retries: Maximum number of retry attempts on failure.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...
