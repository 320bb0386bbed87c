"""
relaychat: chat generation core.

Routes user messages through interchangeable LLM backends, optionally
augments them with web search, and streams responses into conversation state.
"""

__version__ = "0.3.0"
