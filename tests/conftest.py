"""Shared fixtures: sample model output, in-memory images, fake Gemini clients."""

import io
import json
from types import SimpleNamespace

import pytest
from PIL import Image

import gemini_service
from imaging import to_data_url


SAMPLE_ANALYSIS = {
    "skinTone": {"hex": "#C68642", "name": "Warm Caramel", "description": "Golden undertone"},
    "hairColor": {"hex": "#2C1B10", "name": "Espresso", "description": "Deep brown-black"},
    "eyeColor": {"hex": "#3B2416", "name": "Dark Chocolate", "description": "Rich brown"},
    "seasonalPalette": "Warm Autumn",
    "description": "Earthy, saturated tones bring out your golden warmth.",
    "recommendations": [
        {
            "category": "Single Colour",
            "why": "Rich single hues echo your warmth.",
            "colors": [
                {"hex": "#8B1A1A", "name": "Oxblood", "description": "Deep red"},
                {"hex": "#C5A000", "name": "Turmeric", "description": "Golden yellow"},
            ],
        },
        {
            "category": "Two Colour Contrast",
            "why": "Contrast borders frame the face.",
            "colors": [
                {"hex": "#004D40", "name": "Peacock", "description": "Teal body",
                 "secondaryHex": "#D4AF37"},
            ],
        },
        {
            "category": "Ombre",
            "why": "Gradients soften the transition to the skin.",
            "colors": [
                {"hex": "#FF7F50", "name": "Sunset", "description": "Coral to wine",
                 "isGradient": True, "gradientEndHex": "#722F37"},
            ],
        },
    ],
}


@pytest.fixture
def analysis_dict():
    return json.loads(json.dumps(SAMPLE_ANALYSIS))


def make_jpeg_data_url(width=64, height=48, color=(200, 120, 80)):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return to_data_url(buf.getvalue(), "image/jpeg")


@pytest.fixture
def jpeg_data_url():
    return make_jpeg_data_url()


class FakeModels:
    """Stands in for client.models; replays `responses` (exceptions are raised)."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def fake_gemini(monkeypatch):
    """Patch the client factory; returns a function that installs responses."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.delenv("ANALYSIS_MODEL", raising=False)
    monkeypatch.delenv("VISUALIZATION_MODEL", raising=False)

    def install(*responses):
        models = FakeModels(responses)
        monkeypatch.setattr(gemini_service, "create_client",
                            lambda: SimpleNamespace(models=models))
        return models

    return install


def image_response(data=b"\x89PNG fake", mime_type="image/png", text="Here is your saree."):
    parts = [
        SimpleNamespace(text=text, inline_data=None),
        SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type)),
    ]
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])


class RateLimitError(Exception):
    def __init__(self, message="429 RESOURCE_EXHAUSTED. Quota exceeded."):
        super().__init__(message)
        self.code = 429
