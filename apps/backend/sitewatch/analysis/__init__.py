from .base import AnalysisClient
from .gemini import GeminiClient

__all__ = ["AnalysisClient", "GeminiClient"]
