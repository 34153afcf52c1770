import asyncio
from typing import AsyncIterator

UNCONFIGURED_REPLY = (
    "Hi! I am your helpful chat agent. "
    "Please provide some content or context so I can assist you better."
)

FALLBACK_REPLY = (
    "Hello! I'm a demo chat agent. Based on your question about tours in Italy, "
    "here are some recommendations: 1. Rome Colosseum Tour, 2. Venice Gondola Ride, "
    "3. Florence Duomo Visit. For more details, please provide a real API key."
)


class MockResponder:
    """Word-by-word canned reply that looks like a streaming completion."""

    def __init__(self, delay_ms: int = 100):
        self.delay = delay_ms / 1000

    @staticmethod
    def words(text: str) -> list[str]:
        return [f"{word} " for word in text.split()]

    async def stream(self, text: str = UNCONFIGURED_REPLY) -> AsyncIterator[str]:
        for word in self.words(text):
            await asyncio.sleep(self.delay)
            yield word
