"""Prompt artifact sink.

Writes the exact prompt sent to the agent next to the server logs so a
run can be inspected afterwards. Failures only produce a warning.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def prompt_artifact_name(session_id: str, prompt_text: str) -> str:
    """File name for a prompt: ``prompt-<session>-<sha256[:8]>.txt``."""
    digest = hashlib.sha256(prompt_text.encode("utf-8")).hexdigest()[:8]
    return f"prompt-{session_id}-{digest}.txt"


class PromptArtifactSink:
    """Writes prompt artifacts into a log directory.

    Attributes:
        log_path: Directory the artifacts are written to.
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)

    def write(self, session_id: str, prompt_text: str) -> Optional[Path]:
        """Write the prompt text.

        Returns:
            The written path, or None when the write failed.
        """
        try:
            path = self.log_path / prompt_artifact_name(session_id, prompt_text)
            self.log_path.mkdir(parents=True, exist_ok=True)
            path.write_text(prompt_text, encoding="utf-8")
        except (OSError, ValueError) as exc:
            # Text that is not valid UTF-8 (lone surrogates) raises UnicodeEncodeError
            logger.warning(
                "Failed to write prompt artifact",
                extra={"log_path": str(self.log_path), "session_id": session_id, "error": str(exc)},
            )
            return None

        logger.debug(
            "Prompt artifact written",
            extra={"path": str(path), "bytes": len(prompt_text.encode("utf-8"))},
        )
        return path
