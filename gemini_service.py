import json
import os
import re
import time

from google import genai
from google.genai import types

from color_models import AnalysisResult
from imaging import decode_image_data, to_data_url

DEFAULT_ANALYSIS_MODEL = "gemini-3-flash-preview"
DEFAULT_VISUALIZATION_MODEL = "gemini-2.5-flash-image"


class MissingApiKeyError(RuntimeError):
    pass


class EmptyResponseError(Exception):
    pass


class NoImageError(Exception):
    pass


# ---------------------------------------------------------------------------
# Client setup: the key is looked up on every call, never cached
# ---------------------------------------------------------------------------

def get_api_key() -> str:
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not api_key:
        raise MissingApiKeyError("GEMINI_API_KEY not configured on server")
    return api_key


def create_client() -> genai.Client:
    return genai.Client(api_key=get_api_key())


# ---------------------------------------------------------------------------
# Retry with exponential backoff on rate limits
# ---------------------------------------------------------------------------

def is_rate_limit_error(error: Exception) -> bool:
    """True for HTTP 429 or quota / resource-exhausted errors."""
    for attr in ("code", "status", "status_code"):
        if getattr(error, attr, None) == 429:
            return True
    message = str(error).lower()
    return "429" in message or "quota" in message or "exhausted" in message


def with_retry(fn, retries: int = 3, delay: int = 2000, sleep=time.sleep):
    """Call fn(), retrying rate-limited failures up to `retries` times.

    The wait starts at `delay` milliseconds and doubles after each retry.
    Any other error, or a rate limit once retries run out, is re-raised as is.
    No jitter, cap or overall deadline.
    """
    while True:
        try:
            return fn()
        except Exception as e:
            if retries <= 0 or not is_rate_limit_error(e):
                raise
            print(f"[API] Limit reached. Retrying in {delay}ms... ({retries} attempts left)")
            sleep(delay / 1000)
            retries -= 1
            delay *= 2


# ---------------------------------------------------------------------------
# Color Analysis
# ---------------------------------------------------------------------------

ANALYSIS_PROMPT = """
Perform a professional color analysis on this portrait.
Determine: Skin tone, Hair color, Eye color (HEX, name, brief desc).
Identify: Seasonal Color Palette (e.g., Warm Autumn).

Suggest Pure Silk Crepe Saree colors in 4 categories. Use accurate HEX codes.
Categories: "Single Colour" (12), "Two Colour Contrast" (10), "Three Colour Contrast" (8), "Ombre" (8).

Format response strictly as JSON.
"""


def _color_schema(with_extras: bool = False) -> types.Schema:
    properties = {
        "hex": types.Schema(type=types.Type.STRING),
        "name": types.Schema(type=types.Type.STRING),
        "description": types.Schema(type=types.Type.STRING),
    }
    if with_extras:
        properties.update({
            "isGradient": types.Schema(type=types.Type.BOOLEAN),
            "gradientEndHex": types.Schema(type=types.Type.STRING),
            "secondaryHex": types.Schema(type=types.Type.STRING),
            "tertiaryHex": types.Schema(type=types.Type.STRING),
        })
    return types.Schema(
        type=types.Type.OBJECT,
        properties=properties,
        required=["hex", "name", "description"],
    )


ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "skinTone": _color_schema(),
        "hairColor": _color_schema(),
        "eyeColor": _color_schema(),
        "seasonalPalette": types.Schema(type=types.Type.STRING),
        "description": types.Schema(type=types.Type.STRING),
        "recommendations": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "category": types.Schema(type=types.Type.STRING),
                    "why": types.Schema(type=types.Type.STRING),
                    "colors": types.Schema(
                        type=types.Type.ARRAY,
                        items=_color_schema(with_extras=True),
                    ),
                },
                required=["category", "why", "colors"],
            ),
        ),
    },
    required=["skinTone", "hairColor", "eyeColor", "seasonalPalette", "description", "recommendations"],
)


def _parse_json_response(raw_text: str) -> dict:
    """Parse JSON from model response, stripping markdown fences if present."""
    raw_text = raw_text.strip()
    if raw_text.startswith("```"):
        raw_text = re.sub(r"^```(?:json)?\s*", "", raw_text)
        raw_text = re.sub(r"\s*```$", "", raw_text)
    return json.loads(raw_text)


def _image_part(image: str) -> types.Part:
    return types.Part.from_bytes(data=decode_image_data(image), mime_type="image/jpeg")


def analyze_image(base64_image: str, sleep=time.sleep) -> AnalysisResult:
    """Color analysis of a cropped portrait (data URL or raw base64 JPEG)."""
    image_part = _image_part(base64_image)
    model = os.getenv("ANALYSIS_MODEL", DEFAULT_ANALYSIS_MODEL)

    def _call():
        client = create_client()
        print(f"[VISION] Requesting color analysis from {model}...")
        response = client.models.generate_content(
            model=model,
            contents=[ANALYSIS_PROMPT, image_part],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=ANALYSIS_SCHEMA,
            ),
        )
        result_text = response.text
        if not result_text:
            raise EmptyResponseError("No response from AI Analysis.")
        result = AnalysisResult.from_dict(_parse_json_response(result_text))
        for issue in result.problems():
            print(f"[VISION] WARNING: {issue}")
        print(f"[VISION] Analysis complete: {result.seasonal_palette}, "
              f"{len(result.recommendations)} categories.")
        return result

    return with_retry(_call, sleep=sleep)


# ---------------------------------------------------------------------------
# Saree Visualization
# ---------------------------------------------------------------------------

VISUALIZATION_PROMPT = """
Re-render the person in this image wearing a Premium Pure Silk Crepe Saree: {color_details}.
Must feature realistic grainy silk crepe texture and fluid, elegant drape.
Keep face features, hair, and original background unchanged.
"""


def _extract_inline_image(response):
    """Return (data, mime_type) of the first inline image across all candidates."""
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return inline.data, inline.mime_type or "image/png"
    return None, None


def visualize_outfit(original_image: str, color_details: str, sleep=time.sleep) -> str:
    """Re-render the portrait wearing the described saree, returned as a data URL."""
    image_part = _image_part(original_image)
    prompt = VISUALIZATION_PROMPT.format(color_details=color_details)
    model = os.getenv("VISUALIZATION_MODEL", DEFAULT_VISUALIZATION_MODEL)

    def _call():
        client = create_client()
        print(f"[GEN] Visualizing '{color_details}' with {model}...")
        response = client.models.generate_content(
            model=model,
            contents=[image_part, prompt],
        )
        data, mime_type = _extract_inline_image(response)
        if data is None:
            raise NoImageError("Saree visualization failed. No image returned.")
        # the SDK decodes inline data to bytes; tolerate a base64 str too
        if isinstance(data, str):
            return f"data:{mime_type};base64,{data}"
        print(f"[GEN] Got {len(data)} bytes of {mime_type}.")
        return to_data_url(data, mime_type)

    return with_retry(_call, sleep=sleep)
