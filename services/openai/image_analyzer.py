"""Description: Reverse image-generation analysis using OpenAI structured outputs."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from models.analysis_models import AnalysisMetadata, AnalysisResult
from services.openai.analysis_errors import AnalysisError, AnalysisTransportError
from services.openai.analysis_prompts import build_analysis_prompt, build_system_prompt
from services.openai.analysis_schema import RESPONSE_FORMAT
from services.openai.media_inputs import build_messages
from services.openai.response_parser import extract_fingerprint, extract_usage, parse_structured_output

LOGGER = logging.getLogger(__name__)


class ImageAnalyzer:
    """Describe one image and derive a text-to-image prompt and tags."""

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        temperature: float = 0.2,
        seed: int = 42,
        timeout: float = 45.0,
    ) -> None:
        """Initialize the analyzer with an OpenAI async client and sampling settings."""
        if client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.temperature = temperature
        self.seed = seed
        self.timeout = timeout
        self.system_prompt = build_system_prompt()

    async def analyze(
        self,
        image_bytes: bytes,
        *,
        filename: str,
        context: Optional[str] = None,
        model: str,
        mime_type: str = "image/jpeg",
    ) -> AnalysisResult:
        """Analyze one image.

        Args:
            image_bytes: Raw, already validated image bytes.
            filename: Original filename, used for logging and error context.
            context: Optional free text naming entities the output must mention.
            model: Vision-capable chat model identifier.
            mime_type: MIME type used for the image data URL.

        Returns:
            The parsed `AnalysisResult` with provenance metadata.

        Raises:
            AnalysisRefusedError: The model refused the request.
            AnalysisUnparseableError: The structured output was empty or malformed.
            AnalysisTransportError: Timeout, network failure or API error status.
        """
        start_time = time.time()
        user_prompt = build_analysis_prompt(context)
        messages = build_messages(
            self.system_prompt, user_prompt, image_bytes=image_bytes, mime_type=mime_type
        )
        response = await self._create_completion(model, messages, filename)

        try:
            parsed = parse_structured_output(response)
        except AnalysisError as exc:
            exc.filename = filename
            LOGGER.error("Analysis of %s failed (%s): %s", filename, exc.kind, exc)
            raise

        LOGGER.info("Analyzed %s with %s in %.2fs", filename, model, time.time() - start_time)
        return AnalysisResult(
            description=parsed["description"],
            prompt=parsed["prompt"],
            tags=parsed["tags"],
            metadata=AnalysisMetadata(
                model=model,
                prompt=user_prompt,
                temperature=self.temperature,
                seed=self.seed,
                usage=extract_usage(response),
                system_fingerprint=extract_fingerprint(response),
            ),
        )

    async def _create_completion(self, model: str, messages: List[Dict[str, Any]], filename: str) -> Any:
        """Send the multimodal request, mapping transport failures to `AnalysisTransportError`."""
        try:
            return await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    response_format=RESPONSE_FORMAT,
                    temperature=self.temperature,
                    seed=self.seed,
                    timeout=self.timeout,
                ),
                timeout=self.timeout + 5,
            )
        except asyncio.TimeoutError as exc:
            LOGGER.error("OpenAI request for %s timed out after %.0fs", filename, self.timeout)
            raise AnalysisTransportError(
                f"Analysis request timed out after {self.timeout:.0f}s", filename=filename
            ) from exc
        except openai.APIError as exc:
            LOGGER.error("Error during OpenAI Chat Completions call for %s: %s", filename, exc)
            raise AnalysisTransportError(str(exc), filename=filename) from exc
