# services/prompt_builder.py
"""Bounded prompt composition for chat turns"""
import logging
from dataclasses import dataclass
from typing import List

from docintel.config import settings
from docintel.core.domain import ChatMessage, ChatTurn, Prompt, RetrievedChunk
from docintel.core.enums import MessageRole
from docintel.core.errors import InvalidConfiguration
from docintel.utils.tokens import estimate_message_tokens

logger = logging.getLogger(settings.LOGGER_NAME)


@dataclass
class ComposedPrompt:
    prompt: Prompt
    sources: List[RetrievedChunk]  # chunks that made it into the prompt, in rank order
    history_used: int
    history_dropped: int
    estimated_tokens: int


class PromptBuilder:
    """
    system + history + retrieved context + new user message, within a token budget.

    The new message and system prompt always fit (checked up front). Retrieved
    chunks come next, lowest-ranked dropped first when over budget. History
    fills what is left one whole exchange at a time, newest first, so the oldest
    exchanges are the ones dropped.
    """

    def __init__(self, system_prompt: str = settings.SYSTEM_PROMPT):
        self.system_prompt = system_prompt

    @staticmethod
    def _render_context(chunks: List[RetrievedChunk]) -> str:
        return "\n\n".join(
            f"Source {index} ({chunk.document_title}):\n{chunk.text}"
            for index, chunk in enumerate(chunks, start=1)
        )

    def _render_user_turn(self, chunks: List[RetrievedChunk], user_message: str) -> str:
        if not chunks:
            return user_message
        return f"Context:\n{self._render_context(chunks)}\n\nQuestion:\n{user_message}"

    @staticmethod
    def _exchanges(history: List[ChatMessage]) -> List[List[ChatTurn]]:
        """
        Group history into exchanges: a user turn followed by its replies.

        An unanswered user turn is an exchange on its own. Replies with no
        preceding question and system notes are left out.
        """
        exchanges: List[List[ChatTurn]] = []
        for message in history:
            turn = ChatTurn(role=message.role, content=message.content)
            if message.role == MessageRole.USER:
                exchanges.append([turn])
            elif message.role == MessageRole.ASSISTANT and exchanges:
                exchanges[-1].append(turn)
        return exchanges

    def ensure_fits(self, user_message: str, context_window: int) -> None:
        """Reject a message that cannot fit the window even without history or context."""
        base = estimate_message_tokens(self.system_prompt) + estimate_message_tokens(user_message)
        if base > context_window:
            raise InvalidConfiguration(
                f"Message needs ~{base} tokens with instructions, context window is {context_window}"
            )

    def build(
        self,
        history: List[ChatMessage],
        chunks: List[RetrievedChunk],
        user_message: str,
        context_window: int,
        max_chunks: int,
    ) -> ComposedPrompt:
        self.ensure_fits(user_message, context_window)
        system_tokens = estimate_message_tokens(self.system_prompt)

        # ============ RETRIEVED CONTEXT ============
        included = list(chunks[:max(0, max_chunks)])
        user_turn = self._render_user_turn(included, user_message)
        while included and system_tokens + estimate_message_tokens(user_turn) > context_window:
            included.pop()
            user_turn = self._render_user_turn(included, user_message)
        used = system_tokens + estimate_message_tokens(user_turn)

        # ============ HISTORY ============
        kept_exchanges: List[List[ChatTurn]] = []
        for exchange in reversed(self._exchanges(history)):
            cost = sum(estimate_message_tokens(turn.content) for turn in exchange)
            if used + cost > context_window:
                break
            kept_exchanges.append(exchange)
            used += cost
        kept = [turn for exchange in reversed(kept_exchanges) for turn in exchange]

        dropped = len(history) - len(kept)
        if dropped or len(included) < min(len(chunks), max_chunks):
            logger.debug(
                f"[CHAT] Prompt trimmed to ~{used}/{context_window} tokens: "
                f"{dropped} history messages and {min(len(chunks), max_chunks) - len(included)} chunks dropped"
            )

        prompt = Prompt(
            system=self.system_prompt,
            turns=kept + [ChatTurn(role=MessageRole.USER, content=user_turn)],
        )
        return ComposedPrompt(
            prompt=prompt,
            sources=included,
            history_used=len(kept),
            history_dropped=dropped,
            estimated_tokens=used,
        )
