"""
Database Schemas for the Portfolio Hub app

Each Pydantic model corresponds to a MongoDB collection.
The collection name is the lowercase of the class name.

Collections:
- User: authentication + identity
- Template: reusable design (layouts, section definitions, theme options)
- Portfolio: a user's site built from a Template plus section content
- PortfolioView: one recorded visit to a published portfolio
- Session / Token: hashed bearer sessions and one-shot email tokens

Request payloads consumed by the services live at the bottom of this file.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

CATEGORIES = ("developer", "designer", "photographer", "creative", "business", "personal", "other")
Category = Literal["developer", "designer", "photographer", "creative", "business", "personal", "other"]
Role = Literal["user", "admin"]

HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
URL_OR_EMPTY = r"^(https?://\S+)?$"


def _check_unique_ids(items, label: str):
    seen = set()
    for item in items:
        if item.id in seen:
            raise ValueError(f"duplicate {label} id '{item.id}'")
        seen.add(item.id)
    return items


class ImageRef(BaseModel):
    url: str
    public_id: str


class SocialAccounts(BaseModel):
    """Profile links; an empty string clears one."""
    website: Optional[str] = Field(None, max_length=200, pattern=URL_OR_EMPTY)
    github: Optional[str] = Field(None, max_length=200, pattern=URL_OR_EMPTY)
    twitter: Optional[str] = Field(None, max_length=200, pattern=URL_OR_EMPTY)
    linkedin: Optional[str] = Field(None, max_length=200, pattern=URL_OR_EMPTY)
    instagram: Optional[str] = Field(None, max_length=200, pattern=URL_OR_EMPTY)


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, description="Unique handle, stored lowercase")
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=100)
    password_hash: str = Field(..., description="Bcrypt hash")
    role: Role = "user"
    verified: bool = False
    profile_picture: Optional[ImageRef] = None
    title: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    social_accounts: Optional[SocialAccounts] = None


# Template building blocks

class Spacing(BaseModel):
    base: float
    multiplier: float


class LayoutStructure(BaseModel):
    sections: List[str] = Field(default_factory=list)
    grid_system: str
    spacing: Optional[Spacing] = None
    responsive: Optional[Dict[str, Dict[str, Any]]] = None
    groups: Optional[Dict[str, Dict[str, Any]]] = None


class Layout(BaseModel):
    id: str
    name: str
    preview_image: Optional[str] = None
    structure: LayoutStructure


class SectionDefinition(BaseModel):
    type: str
    allowed_components: List[str] = Field(default_factory=list)
    default_data: Dict[str, Any] = Field(default_factory=dict)
    variants: Optional[List[str]] = None


class ColorScheme(BaseModel):
    id: str
    name: str
    colors: Dict[str, str] = Field(..., description="Color role -> hex value")

    @field_validator("colors")
    @classmethod
    def colors_are_hex(cls, v: Dict[str, str]):
        for role, value in v.items():
            if not HEX_COLOR.match(value):
                raise ValueError(f"color '{role}' must be a hex value, got '{value}'")
        return v


class FontSet(BaseModel):
    heading: str
    body: str
    mono: Optional[str] = None


class FontPairing(BaseModel):
    id: str
    name: str
    fonts: FontSet


class ThemeOptions(BaseModel):
    color_schemes: List[ColorScheme] = Field(default_factory=list)
    font_pairings: List[FontPairing] = Field(default_factory=list)
    spacing: Dict[str, Spacing] = Field(default_factory=dict)

    @field_validator("color_schemes")
    @classmethod
    def unique_scheme_ids(cls, v):
        return _check_unique_ids(v, "color scheme")

    @field_validator("font_pairings")
    @classmethod
    def unique_pairing_ids(cls, v):
        return _check_unique_ids(v, "font pairing")


class Review(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime


class Rating(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Template(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., max_length=500)
    category: Category = "other"
    preview_image: Optional[str] = None
    is_published: bool = False
    is_featured: bool = False
    tags: List[str] = Field(default_factory=list)
    usage_count: int = 0
    created_by: Optional[str] = None
    rating: Rating = Field(default_factory=Rating)
    reviews: List[Review] = Field(default_factory=list)

    layouts: List[Layout] = Field(default_factory=list)
    section_definitions: Dict[str, SectionDefinition] = Field(default_factory=dict)
    theme_options: ThemeOptions = Field(default_factory=ThemeOptions)
    component_mapping: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    section_variants: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    style_presets: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    animations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    responsive_layouts: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    schema_version: int = 0
    revision: int = 0

    @field_validator("layouts")
    @classmethod
    def unique_layout_ids(cls, v):
        return _check_unique_ids(v, "layout")


# Portfolio

class LayoutSettings(BaseModel):
    sections: List[str] = Field(default_factory=list)
    show_header: bool = True
    show_footer: bool = True


class PortfolioSettings(BaseModel):
    colors: Dict[str, str] = Field(default_factory=dict)
    fonts: Dict[str, str] = Field(default_factory=dict)
    layout: LayoutSettings = Field(default_factory=LayoutSettings)


class Portfolio(BaseModel):
    user_id: str
    template_id: str
    title: str = Field(..., min_length=1, max_length=100)
    subtitle: Optional[str] = Field(None, max_length=200)
    subdomain: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-z0-9-]+$")
    custom_domain: Optional[str] = None
    is_published: bool = False
    settings: PortfolioSettings = Field(default_factory=PortfolioSettings)
    active_layout: str = "default"
    active_color_scheme: str = "default"
    active_font_pairing: str = "default"
    style_preset: str = "modern"
    animations_enabled: bool = True
    section_variants: Dict[str, str] = Field(default_factory=dict)
    section_content: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    header_image: Optional[ImageRef] = None
    gallery_images: List[ImageRef] = Field(default_factory=list)
    view_count: int = 0


class PortfolioView(BaseModel):
    portfolio_id: str
    ip_address: str
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    date: datetime


class Session(BaseModel):
    user_id: str
    token_hash: str
    expires_at: datetime


class Token(BaseModel):
    user_id: str
    kind: Literal["verify", "reset"]
    token_hash: str
    expires_at: datetime


# Request payloads

class LayoutSettingsPatch(BaseModel):
    sections: Optional[List[str]] = None
    show_header: Optional[bool] = None
    show_footer: Optional[bool] = None


class SettingsPatch(BaseModel):
    colors: Optional[Dict[str, str]] = None
    fonts: Optional[Dict[str, str]] = None
    layout: Optional[LayoutSettingsPatch] = None


class PortfolioCreate(BaseModel):
    template_id: str
    title: str = Field(..., min_length=1, max_length=100)
    subtitle: Optional[str] = Field(None, max_length=200)
    subdomain: str
    custom_domain: Optional[str] = None
    is_published: bool = False
    settings: Optional[SettingsPatch] = None
    content: Optional[Dict[str, Dict[str, Any]]] = None
    active_layout: Optional[str] = None
    active_color_scheme: Optional[str] = None
    active_font_pairing: Optional[str] = None
    style_preset: Optional[str] = None
    animations_enabled: Optional[bool] = None
    section_variants: Optional[Dict[str, str]] = None


class PortfolioUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    subtitle: Optional[str] = Field(None, max_length=200)
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    is_published: Optional[bool] = None
    settings: Optional[SettingsPatch] = None
    content: Optional[Dict[str, Dict[str, Any]]] = None
    active_layout: Optional[str] = None
    active_color_scheme: Optional[str] = None
    active_font_pairing: Optional[str] = None
    style_preset: Optional[str] = None
    animations_enabled: Optional[bool] = None
    section_variants: Optional[Dict[str, str]] = None
    header_image: Optional[ImageRef] = None
    gallery_images: Optional[List[ImageRef]] = None


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    category: Category
    preview_image: Optional[str] = None
    is_published: bool = False
    is_featured: bool = False
    tags: List[str] = Field(default_factory=list)
    layouts: Optional[List[Layout]] = None
    theme_options: Optional[ThemeOptions] = None
    section_definitions: Optional[Dict[str, SectionDefinition]] = None

    @field_validator("layouts")
    @classmethod
    def unique_layout_ids(cls, v):
        return _check_unique_ids(v, "layout") if v else v


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    category: Optional[Category] = None
    preview_image: Optional[str] = None
    is_published: Optional[bool] = None
    is_featured: Optional[bool] = None
    tags: Optional[List[str]] = None


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ViewCreate(BaseModel):
    portfolio_id: str
    referrer: Optional[str] = None



class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    title: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    social_accounts: Optional[SocialAccounts] = None
