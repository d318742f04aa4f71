"""
NIM Proxy - A proxy server that translates between the OpenAI chat completion
API and NVIDIA NIM.

Callers use familiar OpenAI model names; the proxy maps them to NIM models,
forwards the request and reshapes the response.
"""

__version__ = "0.1.0"

from .client import ModelMapping
from .config import Config

__all__ = [
    "Config",
    "ModelMapping",
]
