# =============================================================================
# Prompt Transcript — Diagnostic Log of Prompts and Responses
# =============================================================================
#
# Appends every prompt sent to a model (and the parsed response) to flat
# text files, for debugging prompt changes. Diagnostic only: nothing reads
# these files back.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SEPARATOR = "=" * 80


class PromptTranscript:
    """Append-only prompt and response logs."""

    def __init__(self, prompt_path: str | Path, response_path: str | Path) -> None:
        self.prompt_path = Path(prompt_path)
        self.response_path = Path(response_path)

    async def write_prompt(self, system_prompt: str, content: str = "") -> None:
        timestamp = datetime.now().isoformat(timespec="seconds")
        entry = f"{timestamp}\n{system_prompt}\n\n{content}\n{SEPARATOR}\n\n"
        await self._append(self.prompt_path, entry)

    async def write_exchange(self, prompt: str, response: Any) -> None:
        """Prompt followed by the parsed response, framed by separators."""
        entry = (
            f"{SEPARATOR}{prompt}\n\n"
            f"{json.dumps(response, ensure_ascii=False, default=str)}\n\n"
            f"{SEPARATOR}\n\n"
        )
        await self._append(self.prompt_path, entry)

    async def write_response(self, raw_response: str) -> None:
        await self._append(self.response_path, raw_response + "\n")

    async def _append(self, path: Path, text: str) -> None:
        try:
            await asyncio.to_thread(self._append_sync, path, text)
        except OSError as e:
            logger.warning("Could not write transcript %s: %s", path, e)

    @staticmethod
    def _append_sync(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(text)
