"""Network tools: search providers, page fetcher, browser sessions, LLM client."""
