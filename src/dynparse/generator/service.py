"""ScriptGenerator: turns a user prompt into a candidate extraction script."""

from __future__ import annotations

import asyncio
import logging

from dynparse.errors import GenerationError

from .extractor import extract_script
from .gateway import ChatModel
from .models import Conversation

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 200


class ScriptGenerator:
    """
    Asks the model for the next script within an ongoing conversation.

    The conversation is mutated on success (prompt and reply are both
    appended) so later attempts see the model's own earlier output. Retrying
    is left to the caller.
    """

    def __init__(self, model: ChatModel, timeout_s: float | None = None) -> None:
        self._model = model
        self.timeout_s = timeout_s

    async def generate(self, conversation: Conversation, user_prompt: str) -> str:
        """Append ``user_prompt``, ask the model for a reply and return the script in it."""
        conversation.add_user(user_prompt)
        try:
            reply = await asyncio.wait_for(
                self._model.complete(conversation.as_messages()),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as err:
            conversation.discard_last()
            raise GenerationError(
                f"Model did not reply within {self.timeout_s:g}s"
            ) from err
        except GenerationError:
            conversation.discard_last()
            raise
        except Exception as err:
            conversation.discard_last()
            raise GenerationError(str(err) or type(err).__name__) from err

        conversation.add_assistant(reply)
        script = extract_script(reply)
        logger.debug(
            "Generated script: %d characters, preview=%r",
            len(script),
            script[:_PREVIEW_CHARS],
        )
        return script
