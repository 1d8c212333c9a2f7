"""
Runtime configuration for the SignalsLoop backend.

Values come from the environment (a local .env is loaded by the entry points).
Boolean switches default ON in dev and can be turned OFF via environment variables.
"""
import os


# LLM provider
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
SENTIMENT_MODEL = os.getenv("SENTIMENT_MODEL", "gpt-4o-mini")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

# Retries (with exponential backoff) handled by the OpenAI client on rate limits and 5xx
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))

# Master switch for every LLM-backed feature (heuristics are used when off)
ENABLE_LLM = os.getenv("ENABLE_LLM", "true").lower() == "true"

# Use tool-calling for chat intents before the rule-based parser
ENABLE_CHAT_LLM_INTENTS = os.getenv("ENABLE_CHAT_LLM_INTENTS", "true").lower() == "true"

# Public site used in links sent back to chat platforms and emails
SITE_URL = os.getenv("SITE_URL", "https://signalsloop.com").rstrip("/")

# Cron / webhook secrets (empty means "not enforced")
CRON_SECRET = os.getenv("CRON_SECRET", "")
SLACK_SIGNING_SECRET = os.getenv("SLACK_SIGNING_SECRET", "")
DISCORD_PUBLIC_KEY = os.getenv("DISCORD_PUBLIC_KEY", "")

# Email delivery for digests
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
DIGEST_FROM_EMAIL = os.getenv("DIGEST_FROM_EMAIL", "SignalsLoop <digest@signalsloop.com>")

# Pause between external calls in batch jobs
BATCH_SLEEP_SECONDS = float(os.getenv("BATCH_SLEEP_SECONDS", "0.5"))


def llm_enabled() -> bool:
    """True when LLM calls should be attempted."""
    if os.getenv("ENABLE_LLM", "true").lower() != "true":
        return False
    return bool(os.getenv("OPENAI_API_KEY"))
