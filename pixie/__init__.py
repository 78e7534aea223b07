"""
Top-level package for the Pixie Discord AI bot.

This package hosts:
- config loading and validation
- Discord client, event handlers and slash commands
- LLM provider adapters (OpenAI, Groq, Ollama) and the AI orchestration client
- web search / weather tools
- SQLAlchemy persistence for users, guilds, permissions and conversations
"""

__version__ = "1.0.0"
