"""
JSON utilities for cleaning and decoding LLM responses.
"""

import json
from typing import Any


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def load_json_response(response: str) -> Any:
    """Decode an LLM response into Python data.

    Falls back to the outermost ``{...}`` span when the model wraps the JSON in prose.

    Raises:
        json.JSONDecodeError: If no JSON object can be decoded
    """
    cleaned = clean_json_response(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find('{')
        end = cleaned.rfind('}')
        if start == -1 or end <= start:
            raise
        return json.loads(cleaned[start:end + 1])
