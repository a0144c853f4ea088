# designs.py
"""
Design generation and revision.

Each call produces a new DesignRecord. Revisions build their prompt from the
previous record's current prompt plus the user's requested changes, and
carry the original prompt forward, so the records form a lineage that ends
when the user approves a design.
"""

import logging
from typing import Optional

from .ai import AIClient
from .errors import AIServiceError, AnalysisFailure, DesignGenerationError
from .models import DesignRecord

logger = logging.getLogger(__name__)

REVISION_PROMPT_TEMPLATE = (
    "Original design was: {previous}. "
    "Modifications requested: {changes}. "
    "Keep the core elements of the original design while applying the requested modifications."
)


def build_revision_prompt(previous_prompt: str, changes: str) -> str:
    return REVISION_PROMPT_TEMPLATE.format(previous=previous_prompt.strip(), changes=changes.strip())


class DesignCycle:
    def __init__(self, ai: AIClient):
        self.ai = ai

    async def generate(self, prompt: str) -> DesignRecord:
        """Generates the first design of a lineage from the user's description."""
        logger.info(f"Initiating design generation (prompt length {len(prompt)})")
        image_url = await self._render(prompt)
        analysis = await self._analyze(image_url)
        return DesignRecord(
            image_url=image_url,
            analysis=analysis,
            original_prompt=prompt,
            current_prompt=prompt,
            status="refining",
        )

    async def revise(self, previous: DesignRecord, changes: str) -> DesignRecord:
        """Returns a new record for the modified design. `previous` is left untouched."""
        logger.info(f"Starting design modification (changes length {len(changes)})")
        prompt = build_revision_prompt(previous.current_prompt, changes)
        image_url = await self._render(prompt)
        analysis = await self._analyze(image_url)
        return DesignRecord(
            image_url=image_url,
            analysis=analysis,
            original_prompt=previous.original_prompt,
            current_prompt=prompt,
            status="refining",
        )

    async def _render(self, prompt: str) -> str:
        try:
            return await self.ai.generate_image(prompt)
        except AIServiceError as e:
            logger.error(f"Design generation failed (prompt length {len(prompt)}): {e}")
            raise DesignGenerationError(len(prompt), str(e)) from e

    async def _analyze(self, image_url: str) -> Optional[str]:
        # Best effort: a missing analysis never fails the design
        try:
            return await self.ai.analyze_image(image_url)
        except AnalysisFailure as e:
            logger.warning(f"Image analysis failed, proceeding without: {e}")
            return None
