# Mark services as a package and expose the model client for tests to monkeypatch.

from . import gemini as gemini  # noqa: F401

__all__ = [
    "gemini",
]
