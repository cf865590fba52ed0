"""Outbound API clients: Google (Gmail, Calendar) and Anthropic Claude."""
