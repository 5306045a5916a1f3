# utils/tokens.py
"""
Token estimation for prompt budgeting.

Uses the usual approximation of ~4 characters per token. Providers count tokens
with their own tokenizers, so budgets computed here are approximate.
"""
CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4  # role marker + separators


def estimate_tokens(text: str) -> int:
    """Estimate token count from text length."""
    if not text:
        return 0
    return max(1, -(-len(text) // CHARS_PER_TOKEN))


def estimate_message_tokens(content: str) -> int:
    """Estimate tokens for one chat message including role overhead."""
    return MESSAGE_OVERHEAD_TOKENS + estimate_tokens(content)
