# services/llm_service.py
import asyncio
import logging
from typing import List, Optional

import requests

from config import settings
from core.domain import SearchResult
from core.errors import SynthesisFailed
from core.interfaces import IAnswerService

logger = logging.getLogger(settings.LOGGER_NAME)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def build_answer_instructions(fragments: List[str]) -> str:
    """Instructions that make the answer cover every part of a decomposed question."""
    lines = [
        "You are a professional business assistant that answers questions using the provided context.",
        "",
        "INSTRUCTIONS:",
        "1. Answer ALL parts of the question separately if information exists in the context.",
        "2. If you cannot find information for a specific part, explicitly state: "
        "\"I do not have information about [that specific topic]\".",
        "3. Use plain professional text only, no markdown and no special formatting.",
        "4. Use numbered items (\"1. \", \"2. \") and line breaks between parts.",
        "5. Be concise, factual and complete.",
    ]
    if len(fragments) > 1:
        lines.append("")
        lines.append("The question has these parts, address each one:")
        lines.extend(f"- {fragment}" for fragment in fragments)
    return "\n".join(lines)


def build_prompt(question: str, chunks: List[SearchResult], instructions: str) -> str:
    context = CONTEXT_SEPARATOR.join(
        f"[Source {i} - {result.filename}]\n{result.chunk.content}"
        for i, result in enumerate(chunks, start=1)
    )
    return (
        f"{instructions}\n\n"
        f"Provided Context:\n{context}\n\n"
        f"Question: {question}\n\n"
        f"Answer (plain professional text, addressing ALL parts of the question):"
    )


class OllamaAnswerService(IAnswerService):
    """Answer synthesis through a local LLM API (e.g., Ollama)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            base_url: The base URL of the LLM API.
            model: The name of the model to use.
            timeout: The request timeout in seconds.
        """
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.model = model or settings.LLM_MODEL_NAME
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS

    async def synthesize(self, question: str, chunks: List[SearchResult], instructions: str) -> str:
        prompt = build_prompt(question, chunks, instructions)
        return await asyncio.to_thread(self.generate, prompt)

    def generate(self, prompt: str) -> str:
        """Sends a prompt to the LLM and returns the answer text."""
        if not prompt or not prompt.strip():
            logger.warning("[LLM] Generate called with an empty prompt.")
            raise SynthesisFailed("Empty prompt provided")

        try:
            logger.info(f"[LLM] Sending prompt to model '{self.model}'...")
            response = requests.post(
                f"{self.base_url}/api/generate",
                json={
                    "model": self.model,
                    "prompt": prompt,
                    "stream": False,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()

        except requests.exceptions.Timeout as e:
            logger.error(f"[LLM] Request timed out after {self.timeout} seconds.")
            raise SynthesisFailed("The answer service timed out", retryable=True) from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"[LLM] Cannot connect to LLM at {self.base_url}. Is the service running?")
            raise SynthesisFailed("The answer service is unreachable", retryable=True) from e
        except requests.exceptions.HTTPError as e:
            logger.error(f"[LLM] Service returned an error: {e.response.status_code} {e.response.text}")
            raise SynthesisFailed(retryable=e.response.status_code >= 500) from e
        except ValueError as e:
            logger.error(f"[LLM] Response was not valid JSON: {e}")
            raise SynthesisFailed() from e

        answer = (result.get("response") or "").strip() if isinstance(result, dict) else ""
        if not answer:
            logger.error("[LLM] Response was empty or malformed.")
            raise SynthesisFailed("The answer service returned an empty response")

        logger.info(f"[LLM] Received answer ({len(answer)} chars).")
        return answer
