from .gemini_client import GeminiClient, GeminiError
from .oracle import GeminiOracle, build_response_schema, parse_verdict, split_data_uri

__all__ = ["GeminiClient", "GeminiError", "GeminiOracle", "build_response_schema", "parse_verdict", "split_data_uri"]
