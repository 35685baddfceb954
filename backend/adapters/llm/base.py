"""
Critique model contract.

Purpose:
- One prompt in, one text completion out.
- Keep timeouts, parsing and lesson bookkeeping OUT of the adapter.

Rules:
- This file contains NO logic.
- No retries.
- No streaming.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class CriticClient(ABC):
    """
    The adapter is a *dumb pipe*: prompt -> vendor -> text.

    Critic responsibilities (NOT here):
    - Prompt construction
    - Timeout
    - Verdict parsing
    - Error isolation
    """

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """
        Run a single non-streaming completion.

        Contract:
        - Returns the response text ("" if the vendor returned no text).
        - May raise any vendor/network exception; the caller isolates it.
        - Must NOT retry internally.
        """
        raise NotImplementedError
