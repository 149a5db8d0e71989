from warmintro.backends.base import LLMBackend


def get_backend(provider: str) -> LLMBackend | None:
    """Factory function to create backend instance.

    "local" means no provider: callers fall back to their offline behaviour.
    """
    if provider == "claude":
        from warmintro.backends.claude_backend import ClaudeBackend
        return ClaudeBackend()
    elif provider == "gemini":
        from warmintro.backends.gemini_backend import GeminiBackend
        return GeminiBackend()
    elif provider == "local":
        return None
    else:
        raise ValueError(f"Unknown provider: {provider}. Available: ['claude', 'gemini', 'local']")


__all__ = ["LLMBackend", "get_backend"]
