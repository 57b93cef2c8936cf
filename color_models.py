import re
from dataclasses import dataclass
from typing import Optional

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def is_hex_color(value) -> bool:
    return isinstance(value, str) and bool(HEX_COLOR_RE.match(value))


@dataclass(frozen=True)
class ColorInfo:
    hex: str                                # primary / body color, e.g. "#8B1A1A"
    name: str
    description: str
    secondary_hex: Optional[str] = None     # border in two/three-tone designs
    tertiary_hex: Optional[str] = None      # blouse in three-tone designs
    is_gradient: bool = False
    gradient_end_hex: Optional[str] = None  # ombre end color

    @classmethod
    def from_dict(cls, data: dict) -> "ColorInfo":
        return cls(
            hex=data["hex"],
            name=data["name"],
            description=data["description"],
            secondary_hex=data.get("secondaryHex") or None,
            tertiary_hex=data.get("tertiaryHex") or None,
            is_gradient=bool(data.get("isGradient", False)),
            gradient_end_hex=data.get("gradientEndHex") or None,
        )

    def to_dict(self) -> dict:
        out = {"hex": self.hex, "name": self.name, "description": self.description}
        if self.secondary_hex:
            out["secondaryHex"] = self.secondary_hex
        if self.tertiary_hex:
            out["tertiaryHex"] = self.tertiary_hex
        if self.is_gradient:
            out["isGradient"] = True
        if self.gradient_end_hex:
            out["gradientEndHex"] = self.gradient_end_hex
        return out

    def problems(self) -> list:
        """List invariant violations. The model is asked for valid hex codes
        but nothing forces it, so callers decide what to do with these."""
        issues = []
        for field_name in ("hex", "secondary_hex", "tertiary_hex", "gradient_end_hex"):
            value = getattr(self, field_name)
            if value is not None and not is_hex_color(value):
                issues.append(f"{field_name} is not a hex color: {value!r}")
        if self.is_gradient and not self.gradient_end_hex:
            issues.append("is_gradient set without gradient_end_hex")
        return issues


@dataclass(frozen=True)
class Recommendation:
    category: str     # "Single Colour", "Two Colour Contrast", ...
    why: str
    colors: tuple     # tuple[ColorInfo, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "Recommendation":
        return cls(
            category=data["category"],
            why=data["why"],
            colors=tuple(ColorInfo.from_dict(c) for c in data["colors"]),
        )

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "why": self.why,
            "colors": [c.to_dict() for c in self.colors],
        }


@dataclass(frozen=True)
class AnalysisResult:
    skin_tone: ColorInfo
    hair_color: ColorInfo
    eye_color: ColorInfo
    seasonal_palette: str       # e.g. "Warm Autumn"
    description: str
    recommendations: tuple      # tuple[Recommendation, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        return cls(
            skin_tone=ColorInfo.from_dict(data["skinTone"]),
            hair_color=ColorInfo.from_dict(data["hairColor"]),
            eye_color=ColorInfo.from_dict(data["eyeColor"]),
            seasonal_palette=data["seasonalPalette"],
            description=data["description"],
            recommendations=tuple(Recommendation.from_dict(r) for r in data["recommendations"]),
        )

    def to_dict(self) -> dict:
        return {
            "skinTone": self.skin_tone.to_dict(),
            "hairColor": self.hair_color.to_dict(),
            "eyeColor": self.eye_color.to_dict(),
            "seasonalPalette": self.seasonal_palette,
            "description": self.description,
            "recommendations": [r.to_dict() for r in self.recommendations],
        }

    def problems(self) -> list:
        """Invariant violations across every color, labelled by where they sit."""
        labelled = [("skinTone", self.skin_tone), ("hairColor", self.hair_color), ("eyeColor", self.eye_color)]
        for rec in self.recommendations:
            for i, color in enumerate(rec.colors):
                labelled.append((f"{rec.category}[{i}]", color))
        return [f"{where}: {issue}" for where, color in labelled for issue in color.problems()]

    def find_color(self, category: str, index: int) -> Optional[ColorInfo]:
        for rec in self.recommendations:
            if rec.category == category:
                if 0 <= index < len(rec.colors):
                    return rec.colors[index]
                return None
        return None
