"""
agentwire - Tool-calling conversation layer for LLM backends.

agentwire sits between an application and a language model backend and
lets the model use tools safely:
- A typed message vocabulary (user, assistant, system, tool call, tool result)
- A tool registry/dispatcher and a read-only composite of registries
- Sandboxed file tools with a read-before-write guard
- Adapters for Ollama, OpenAI, Anthropic and Gemini that return exactly
  one Message per turn, with tool choice, streaming and cancellation

Example usage:
    $ agentwire tools
    $ agentwire call read_file --args '{"path": "README.md"}'
    $ agentwire chat "Summarize README.md" --choice read_file
"""

__version__ = "0.1.0"
__author__ = "agentwire Contributors"

__all__ = [
    "__version__",
    "__author__",
]
