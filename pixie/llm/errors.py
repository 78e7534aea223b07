from __future__ import annotations


class LLMError(Exception):
    """Base error for LLM-related failures."""


class LLMConfigError(LLMError):
    """Provider/model is unknown or its credentials are not configured."""


class LLMProviderError(LLMError):
    """The provider call itself failed."""


class LLMRateLimitError(LLMProviderError):
    pass


class LLMAuthError(LLMProviderError):
    pass


class LLMConnectionError(LLMProviderError):
    pass


def parse_error_message(error: Exception) -> str:
    """
    Map raw exceptions into short, human-readable messages.
    Used for admin notifications and logs.
    """
    s, t = str(error), type(error).__name__
    if isinstance(error, LLMConfigError):
        return f"⚙️ Configuration Error: {s.split(chr(10))[0][:100]}"
    if "429" in s or t in ("RateLimitError", "LLMRateLimitError"):
        return "⚠️ Rate Limited: API provider is temporarily rate-limited. Please retry shortly."
    if "401" in s or "Unauthorized" in s or t == "LLMAuthError":
        return "❌ Authentication Error: Invalid API key or credentials."
    if "404" in s or t == "NotFound":
        return "❌ Not Found: The requested resource was not found."
    if "403" in s or t == "Forbidden":
        return "❌ Forbidden: You don't have permission to access this resource."
    if "Connection" in t or "ECONNREFUSED" in s or "ETIMEDOUT" in s:
        return "❌ Connection Error: Unable to connect to the API provider."
    return f"❌ {t}: {s.split(chr(10))[0][:100]}"
