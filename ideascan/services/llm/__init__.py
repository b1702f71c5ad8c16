"""LLM provider capability: classification and idea extraction backends."""
