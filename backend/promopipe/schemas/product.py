"""Pydantic schema for the product analysis result.

The orchestrator treats product data as opaque; this shape is what the
default analysis stage asks the text model for, and what the script stage
reads back.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProductFeature(BaseModel):
    """Single product feature."""

    title: str = Field(description="Short feature name")
    description: str = Field(description="One sentence describing the benefit")
    icon: Optional[str] = Field(default=None, description="Optional icon keyword")


class PricingTier(BaseModel):
    """Pricing tier as advertised on the product page."""

    tier: str
    price: str
    features: list[str] = Field(default_factory=list)


class Testimonial(BaseModel):
    """Customer quote."""

    quote: str
    author: str
    role: str = ""


class BrandColors(BaseModel):
    """Brand palette as hex strings."""

    primary: str = Field(default="#111827", description="Primary brand color, hex")
    secondary: str = Field(default="#6366f1", description="Secondary brand color, hex")
    accent: str = Field(default="#f59e0b", description="Accent color, hex")


class ProductData(BaseModel):
    """Structured product summary extracted from a page or a description."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(description="Product name")
    tagline: str = Field(description="Short marketing tagline")
    description: str = Field(description="Two or three sentence product summary")
    features: list[ProductFeature] = Field(
        default_factory=list, description="3-6 key features"
    )
    pricing: Optional[list[PricingTier]] = None
    testimonials: Optional[list[Testimonial]] = None
    images: list[str] = Field(default_factory=list, description="Absolute image URLs")
    colors: BrandColors = Field(default_factory=BrandColors)
    tone: Literal["professional", "playful", "minimal", "bold"] = "professional"
    screenshot_path: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
