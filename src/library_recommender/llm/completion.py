"""
Generative completion over an OpenAI-compatible chat endpoint (OpenRouter by default).
"""

from __future__ import annotations

from openai import AsyncOpenAI


class OpenAIChatCompletion:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "moonshotai/kimi-k2:free",
        temperature: float = 0.7,
        referer: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.temperature = temperature
        headers = {"HTTP-Referer": referer} if referer else None
        self._client = client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, default_headers=headers
        )

    async def complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
        )
        return (response.choices[0].message.content or "").strip()

    async def close(self) -> None:
        await self._client.close()
