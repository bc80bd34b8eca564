from .llama_cpp import LlamaCpp

__all__ = [
    "LlamaCpp",
]
