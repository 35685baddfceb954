"""
Live session handler contract.

Purpose:
- Define the callbacks the transport drives while a call is connected.
- Keep routing decisions (player, transcript buffers, UI) OUT of the transport.

Rules:
- This file contains NO logic.
- Callbacks run on the event loop and must not block it.
- Callbacks must not raise; the transport does not guard them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class LiveSessionHandler(ABC):
    """
    Receiver of demultiplexed inbound traffic and lifecycle transitions.

    Call order guarantees (per transport instance):
    - on_active at most once, before any content callback.
    - on_closing at most once, only on an orderly close from ACTIVE,
      and before on_closed.
    - Exactly one of on_closed / on_failure, exactly once, as the last call.
    """

    @abstractmethod
    async def on_active(self) -> None:
        """Setup acknowledged; audio may now be sent."""
        raise NotImplementedError

    @abstractmethod
    async def on_audio(self, pcm_bytes: bytes) -> None:
        """One operator audio payload (PCM16 @ 24 kHz)."""
        raise NotImplementedError

    @abstractmethod
    async def on_operator_text(self, text: str) -> None:
        """Operator transcript fragment."""
        raise NotImplementedError

    @abstractmethod
    async def on_caller_text(self, text: str) -> None:
        """Caller transcription fragment."""
        raise NotImplementedError

    @abstractmethod
    async def on_turn_complete(self) -> None:
        """Operator turn boundary."""
        raise NotImplementedError

    @abstractmethod
    async def on_closing(self) -> None:
        """
        Orderly close started.

        Implementations stop capture and flush transcript buffers here so
        nothing is lost before the socket goes away.
        """
        raise NotImplementedError

    @abstractmethod
    async def on_closed(self, reason: str) -> None:
        """Terminal: orderly close (local hangup or clean remote close)."""
        raise NotImplementedError

    @abstractmethod
    async def on_failure(self, reason: str) -> None:
        """Terminal: connect, handshake or mid-session transport failure."""
        raise NotImplementedError
