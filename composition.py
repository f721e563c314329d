"""
Template composition: category defaults, additive enhancement, and the
merge of a template's defaults with a new portfolio's overrides.

Templates are handled as plain dicts, exactly as they come out of MongoDB.
No function here mutates its arguments. Deltas only ever name top-level
template fields, so they can be written with a single ``$set``.

Id-keyed collections (``layouts``, ``theme_options.color_schemes``,
``theme_options.font_pairings``, the per-section lists in
``section_variants``) and key-addressed mappings (``style_presets``,
``section_definitions``, ...) only grow: an entry whose id/key already
exists is never replaced. ``animations`` is the one exception, see
``enhance``.
"""
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from content import update_section
from errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "developer"

CATEGORY_SECTIONS = {
    "developer": ["header", "about", "projects", "skills", "experience", "education", "contact"],
    "designer": ["header", "about", "gallery", "work", "clients", "testimonials", "contact"],
    "photographer": ["header", "about", "galleries", "categories", "services", "pricing", "contact"],
}

DEFAULT_COLORS = {
    "developer": {"primary": "#6366f1", "secondary": "#8b5cf6", "background": "#ffffff", "text": "#111827"},
    "designer": {"primary": "#ec4899", "secondary": "#f43f5e", "background": "#ffffff", "text": "#111827"},
    "photographer": {"primary": "#000000", "secondary": "#404040", "background": "#ffffff", "text": "#111827"},
    "default": {"primary": "#6366f1", "secondary": "#8b5cf6", "background": "#ffffff", "text": "#111827"},
}

DEFAULT_FONTS = {
    "developer": {"heading": "Inter", "body": "Roboto", "mono": "Fira Code"},
    "designer": {"heading": "Poppins", "body": "Montserrat"},
    "photographer": {"heading": "Playfair Display", "body": "Raleway"},
    "default": {"heading": "Inter", "body": "Roboto"},
}

HEADER_SUBTITLES = {
    "developer": "Software Developer",
    "designer": "Creative Designer",
    "photographer": "Photographer",
}

ABOUT_VARIANTS = {"designer": "with-image", "developer": "with-highlights"}

STANDARD_SPACING = {"base": 8, "multiplier": 1.5}
SPACIOUS_SPACING = {"base": 12, "multiplier": 1.8}

THEME_SPACING = {
    "compact": {"base": 4, "multiplier": 1.2},
    "standard": STANDARD_SPACING,
    "spacious": SPACIOUS_SPACING,
}

COMPONENT_MAPPING = {
    "react": {
        "header": "@/components/template-sections/HeaderSection",
        "about": "@/components/template-sections/AboutSection",
        "projects": "@/components/template-sections/ProjectsSection",
        "skills": "@/components/template-sections/SkillsSection",
        "experience": "@/components/template-sections/ExperienceSection",
        "education": "@/components/template-sections/EducationSection",
        "contact": "@/components/template-sections/ContactSection",
        "gallery": "@/components/template-sections/GallerySection",
        "work": "@/components/template-sections/WorkSection",
        "services": "@/components/template-sections/ServicesSection",
    }
}

ANIMATIONS = {
    "fadeIn": {"id": "fadeIn", "name": "Fade In", "type": "fade", "duration": 800, "easing": "ease-in-out"},
    "slideUp": {"id": "slideUp", "name": "Slide Up", "type": "slide", "direction": "up",
                "duration": 600, "easing": "ease-out"},
    "slideRight": {"id": "slideRight", "name": "Slide Right", "type": "slide", "direction": "right",
                   "duration": 600, "easing": "ease-out"},
    "zoomIn": {"id": "zoomIn", "name": "Zoom In", "type": "zoom", "duration": 500, "easing": "ease"},
    "reveal": {"id": "reveal", "name": "Reveal", "type": "reveal", "duration": 800,
               "easing": "cubic-bezier(0.77, 0, 0.175, 1)"},
    "typewriter": {"id": "typewriter", "name": "Typewriter", "type": "typewriter", "duration": 1200,
                   "easing": "linear"},
}


@dataclass
class TemplateDelta:
    """Top-level template fields to overwrite, plus how many entries each gained."""

    changes: Dict[str, Any] = field(default_factory=dict)
    added: Dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def merge(self, other: "TemplateDelta") -> "TemplateDelta":
        added = dict(self.added)
        for key, count in other.added.items():
            added[key] = added.get(key, 0) + count
        return TemplateDelta(changes={**self.changes, **other.changes}, added=added)


# Lookups

def category_of(template: Dict[str, Any]) -> str:
    return str(template.get("category") or "").strip().lower()


def section_list(category: str) -> List[str]:
    return list(CATEGORY_SECTIONS.get(category, CATEGORY_SECTIONS[DEFAULT_CATEGORY]))


def default_colors(category: str) -> Dict[str, str]:
    return dict(DEFAULT_COLORS.get(category, DEFAULT_COLORS["default"]))


def default_fonts(category: str) -> Dict[str, str]:
    return dict(DEFAULT_FONTS.get(category, DEFAULT_FONTS["default"]))


def _title(section: str) -> str:
    return section[:1].upper() + section[1:]


def _section_definition(section: str, category: str) -> Dict[str, Any]:
    if section == "header":
        return {
            "type": "header",
            "allowed_components": ["title", "subtitle", "navigation", "profile-image", "background-image"],
            "default_data": {"title": "Your Name", "subtitle": HEADER_SUBTITLES.get(category, "Professional")},
        }
    if section == "about":
        return {
            "type": "section",
            "allowed_components": ["title", "bio", "image", "highlights"],
            "default_data": {
                "title": "About Me",
                "bio": "Share your story, background, and what makes you unique.",
                "variant": ABOUT_VARIANTS.get(category, "standard"),
            },
        }
    if section in ("projects", "work"):
        return {
            "type": "section",
            "allowed_components": ["title", "project-items"],
            "default_data": {"title": "Projects" if section == "projects" else "My Work", "items": []},
        }
    if section == "skills":
        return {
            "type": "section",
            "allowed_components": ["title", "skill-categories"],
            "default_data": {"title": "Skills", "categories": []},
        }
    return {
        "type": "section",
        "allowed_components": ["title", "content"],
        "default_data": {"title": _title(section)},
    }


def _base_layouts(category: str, sections: List[str]) -> List[Dict[str, Any]]:
    layouts = [{
        "id": "default",
        "name": "Standard Layout",
        "structure": {"sections": list(sections), "grid_system": "12-column", "spacing": dict(STANDARD_SPACING)},
    }]
    if category == "developer":
        layouts.append({
            "id": "sidebar",
            "name": "Sidebar Navigation",
            "structure": {"sections": list(sections), "grid_system": "sidebar-main",
                          "spacing": dict(STANDARD_SPACING)},
        })
    if category in ("designer", "photographer"):
        layouts.append({
            "id": "minimal",
            "name": "Minimal Portfolio",
            "structure": {"sections": ["header", "gallery", "contact"], "grid_system": "12-column",
                          "spacing": dict(SPACIOUS_SPACING)},
        })
    return layouts


def _base_theme_options(category: str, colors: Dict[str, str], fonts: Dict[str, str]) -> Dict[str, Any]:
    color_schemes = [
        {"id": "default", "name": "Default", "colors": dict(colors)},
        {
            "id": "dark",
            "name": "Dark Mode",
            "colors": {
                "primary": colors["primary"],
                "secondary": colors["secondary"],
                "background": "#111827",
                "text": "#f9fafb",
                "accent": "#f43f5e" if category == "designer" else "#3b82f6",
            },
        },
    ]
    font_pairings = [{"id": "default", "name": "Default", "fonts": dict(fonts)}]

    if category == "designer":
        color_schemes.append({
            "id": "vibrant",
            "name": "Vibrant",
            "colors": {"primary": "#f43f5e", "secondary": "#8b5cf6", "background": "#ffffff",
                       "text": "#18181b", "accent": "#06b6d4"},
        })
    if category == "developer":
        color_schemes.append({
            "id": "github",
            "name": "GitHub Theme",
            "colors": {"primary": "#0969da", "secondary": "#6e7781", "background": "#ffffff",
                       "text": "#24292f", "accent": "#2da44e"},
        })
        font_pairings.append({
            "id": "code",
            "name": "Code-Optimized",
            "fonts": {"heading": "JetBrains Mono", "body": "Inter", "mono": "JetBrains Mono"},
        })

    return {
        "color_schemes": color_schemes,
        "font_pairings": font_pairings,
        "spacing": copy.deepcopy(THEME_SPACING),
    }


def _responsive_layouts(sections: List[str]) -> Dict[str, Dict[str, Any]]:
    return {
        "mobile": {"layout": "stacked", "sections": list(sections)},
        "tablet": {"layout": "default", "sections": list(sections)},
        "desktop": {"layout": "default", "sections": list(sections)},
    }


def derive_defaults(category: str) -> Dict[str, Any]:
    """Build the full set of defaults for a template of ``category``.

    Unknown categories take the developer section list and the ``default``
    color/font entries; this never raises.
    """
    category = str(category or "").strip().lower()
    sections = section_list(category)
    colors = default_colors(category)
    fonts = default_fonts(category)
    return {
        "category": category,
        "sections": sections,
        "colors": colors,
        "fonts": fonts,
        "section_definitions": {s: _section_definition(s, category) for s in sections},
        "layouts": _base_layouts(category, sections),
        "theme_options": _base_theme_options(category, colors, fonts),
        "component_mapping": copy.deepcopy(COMPONENT_MAPPING),
        "responsive_layouts": _responsive_layouts(sections),
    }


# Enhancement candidates

def _enhanced_layouts(category: str) -> List[Dict[str, Any]]:
    layouts = []
    if category == "developer":
        layouts += [
            {
                "id": "sidebar-right",
                "name": "Right Sidebar",
                "structure": {
                    "sections": list(CATEGORY_SECTIONS["developer"]),
                    "grid_system": "sidebar-right",
                    "responsive": {
                        "mobile": {"layout": "stacked"},
                        "tablet": {"layout": "sidebar-right"},
                        "desktop": {"layout": "sidebar-right"},
                    },
                },
            },
            {
                "id": "tabbed",
                "name": "Tabbed Content",
                "structure": {
                    "sections": ["header", "tabs"],
                    "grid_system": "tabs",
                    "groups": {
                        "tabs": {
                            "name": "Tabbed Sections",
                            "sections": ["about", "projects", "skills", "experience", "education", "contact"],
                        }
                    },
                },
            },
        ]
    if category in ("designer", "creative"):
        layouts += [
            {
                "id": "masonry",
                "name": "Masonry Layout",
                "structure": {"sections": ["header", "about", "gallery", "work", "contact"],
                              "grid_system": "masonry", "spacing": dict(SPACIOUS_SPACING)},
            },
            {
                "id": "full-screen",
                "name": "Full Screen Sections",
                "structure": {"sections": ["header", "about", "gallery", "work", "contact"],
                              "grid_system": "full-screen"},
            },
        ]
    if category == "photographer":
        layouts += [
            {
                "id": "carousel",
                "name": "Carousel Showcase",
                "structure": {"sections": ["header", "about", "carousel", "categories", "contact"],
                              "grid_system": "carousel"},
            },
            {
                "id": "portfolio-grid",
                "name": "Portfolio Grid",
                "structure": {"sections": ["header", "galleries", "services", "contact"],
                              "grid_system": "portfolio-grid"},
            },
        ]
    return layouts


def _enhanced_color_schemes(category: str) -> List[Dict[str, Any]]:
    schemes = []
    if category == "developer":
        schemes += [
            {"id": "modern-blue", "name": "Modern Blue",
             "colors": {"primary": "#0096ff", "secondary": "#2563eb", "background": "#f8fafc",
                        "text": "#0f172a", "accent": "#0ea5e9"}},
            {"id": "github-dark", "name": "GitHub Dark",
             "colors": {"primary": "#58a6ff", "secondary": "#238636", "background": "#0d1117",
                        "text": "#c9d1d9", "accent": "#f0883e"}},
        ]
    if category == "designer":
        schemes.append({"id": "creative-purple", "name": "Creative Purple",
                        "colors": {"primary": "#a855f7", "secondary": "#d946ef", "background": "#ffffff",
                                   "text": "#18181b", "accent": "#2563eb"}})
    if category == "photographer":
        schemes.append({"id": "monochrome", "name": "Monochrome",
                        "colors": {"primary": "#262626", "secondary": "#525252", "background": "#ffffff",
                                   "text": "#0a0a0a", "accent": "#737373"}})
    schemes.append({"id": "high-contrast", "name": "High Contrast",
                    "colors": {"primary": "#000000", "secondary": "#0284c7", "background": "#ffffff",
                               "text": "#000000", "accent": "#ef4444"}})
    return schemes


def _enhanced_font_pairings(category: str) -> List[Dict[str, Any]]:
    pairings = [{"id": "elegant", "name": "Elegant",
                 "fonts": {"heading": "Cormorant Garamond", "body": "Nunito Sans"}}]
    if category == "developer":
        pairings.append({"id": "coding", "name": "Coding",
                         "fonts": {"heading": "Fira Code", "body": "IBM Plex Sans", "mono": "Fira Code"}})
    if category == "designer":
        pairings.append({"id": "creative", "name": "Creative",
                         "fonts": {"heading": "Abril Fatface", "body": "Work Sans"}})
    if category == "photographer":
        pairings.append({"id": "editorial", "name": "Editorial",
                         "fonts": {"heading": "Playfair Display", "body": "Lora"}})
    return pairings


def _variant(id_: str, name: str, description: str, **configuration) -> Dict[str, Any]:
    return {"id": id_, "name": name, "description": description, "configuration": configuration}


def _section_variants(category: str) -> Dict[str, List[Dict[str, Any]]]:
    variants = {
        "header": [
            _variant("standard", "Standard", "Standard header with name and title",
                     variant="centered", alignment="left"),
            _variant("centered", "Centered", "Centered header with profile image",
                     variant="centered", alignment="center"),
            _variant("minimal", "Minimal", "Minimal header with name and title only",
                     variant="minimal", alignment="left"),
            _variant("hero", "Hero", "Full-screen hero header with background image",
                     variant="hero", alignment="center"),
            _variant("split", "Split", "Split layout with image on one side and text on the other",
                     variant="split", alignment="left"),
        ],
        "about": [
            _variant("standard", "Standard", "Standard about section with bio", variant="standard"),
            _variant("withImage", "With Image", "About section with image", variant="with-image"),
            _variant("withHighlights", "With Highlights", "About section with highlights",
                     variant="with-highlights"),
            _variant("minimal", "Minimal", "Minimal about section with just essential info", variant="minimal"),
        ],
        "projects": [
            _variant("grid", "Grid Layout", "Projects displayed in a grid", layout="grid", columns=3),
            _variant("list", "List Layout", "Projects displayed in a vertical list", layout="list"),
            _variant("featured", "Featured Project", "One featured project with smaller projects below",
                     layout="featured"),
        ],
        "skills": [
            _variant("bars", "Skill Bars", "Skills displayed as progress bars", display="bars"),
            _variant("tags", "Skill Tags", "Skills displayed as tags/pills", display="tags"),
            _variant("categories", "Categorized Skills", "Skills grouped by categories", display="categories"),
        ],
        "experience": [
            _variant("timeline", "Timeline", "Experience displayed as a timeline", display="timeline"),
            _variant("cards", "Experience Cards", "Experience displayed as cards", display="cards"),
        ],
        "education": [
            _variant("timeline", "Timeline", "Education displayed as a timeline", display="timeline"),
            _variant("cards", "Education Cards", "Education displayed as cards", display="cards"),
        ],
        "gallery": [
            _variant("grid", "Grid Gallery", "Images displayed in a grid", layout="grid", columns=3),
            _variant("masonry", "Masonry Gallery", "Images displayed in a masonry layout", layout="masonry"),
            _variant("carousel", "Carousel Gallery", "Images displayed in a carousel", layout="carousel"),
        ],
        "contact": [
            _variant("simple", "Simple Contact", "Simple contact section with links", formType="simple"),
            _variant("form", "Contact Form", "Full contact form with fields", formType="full"),
            _variant("split", "Split Contact", "Contact form with map or image on the side", formType="split"),
        ],
    }

    if category == "photographer":
        variants["header"].append(_variant("fullscreen-gallery", "Fullscreen Gallery Header",
                                           "Header with fullscreen background gallery",
                                           variant="gallery", alignment="center"))
        variants["gallery"].append(_variant("fullwidth", "Full Width Gallery",
                                            "Full width gallery with large images", layout="fullwidth"))
    if category == "designer":
        variants["work"] = [
            _variant("grid", "Work Grid", "Work displayed in a grid", layout="grid", columns=3),
            _variant("featured", "Featured Work", "Featured work with case studies", layout="featured"),
            _variant("interactive", "Interactive Portfolio", "Interactive portfolio with hover effects",
                     layout="interactive"),
        ]
    return variants


def _style_presets(category: str) -> Dict[str, Dict[str, Any]]:
    presets = {
        "modern": {
            "name": "Modern",
            "description": "Clean, modern style with rounded corners and subtle shadows",
            "styles": {"borderRadius": "0.5rem", "boxShadow": "0 4px 6px rgba(0, 0, 0, 0.05)",
                       "fontWeight": "normal"},
        },
        "minimal": {
            "name": "Minimal",
            "description": "Minimalist style with thin borders and no shadows",
            "styles": {"borderRadius": "0.25rem", "boxShadow": "none", "borderWidth": "1px",
                       "fontWeight": "light"},
        },
        "bold": {
            "name": "Bold",
            "description": "Bold style with strong colors and thick borders",
            "styles": {"borderRadius": "0.75rem", "boxShadow": "0 10px 15px rgba(0, 0, 0, 0.1)",
                       "borderWidth": "3px", "fontWeight": "bold"},
        },
    }
    if category == "developer":
        presets["code"] = {
            "name": "Code-inspired",
            "description": "Inspired by code editors with monospace fonts and syntax highlighting",
            "styles": {"fontFamily": "monospace", "borderRadius": "0.25rem", "boxShadow": "none",
                       "borderWidth": "1px", "padding": "1rem", "backgroundColor": "#f8f9fa"},
        }
    if category in ("designer", "creative"):
        presets["artistic"] = {
            "name": "Artistic",
            "description": "Creative style with unique borders and artistic elements",
            "styles": {"borderRadius": "1rem 0 1rem 0", "boxShadow": "5px 5px 0 rgba(0, 0, 0, 0.1)",
                       "borderWidth": "2px", "fontWeight": "normal"},
        }
    if category == "photographer":
        presets["darkroom"] = {
            "name": "Darkroom",
            "description": "Dark theme inspired by photography darkrooms",
            "styles": {"backgroundColor": "#1a1a1a", "color": "#ffffff", "borderRadius": "0",
                       "boxShadow": "0 0 20px rgba(0, 0, 0, 0.5)", "borderWidth": "1px",
                       "borderColor": "#333333"},
        }
    return presets


# Additive merge primitives

def _as_list(value: Any, name: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"Template field '{name}' must be a list")
    return value


def _as_dict(value: Any, name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"Template field '{name}' must be an object")
    return value


def _append_missing(existing: List[Any], candidates: Iterable[Dict[str, Any]]) -> Tuple[List[Any], int]:
    """Append candidates whose ``id`` is not yet present; existing entries are kept as-is."""
    taken = {item.get("id") for item in existing if isinstance(item, dict) and item.get("id")}
    merged = copy.deepcopy(existing)
    added = 0
    for candidate in candidates:
        if candidate["id"] in taken:
            continue
        merged.append(copy.deepcopy(candidate))
        taken.add(candidate["id"])
        added += 1
    return merged, added


def _add_missing_keys(existing: Dict[str, Any], candidates: Dict[str, Any]) -> Tuple[Dict[str, Any], int]:
    merged = copy.deepcopy(existing)
    added = 0
    for key, value in candidates.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
            added += 1
    return merged, added


def _merge_section_variants(existing: Dict[str, Any],
                            candidates: Dict[str, List[Dict[str, Any]]]) -> Tuple[Dict[str, Any], int]:
    merged = copy.deepcopy(existing)
    added = 0
    for section, variants in candidates.items():
        current = _as_list(merged.get(section), f"section_variants.{section}")
        merged[section], n = _append_missing(current, variants)
        added += n
    return merged, added


def _merge_mapping_of_mappings(existing: Dict[str, Any], candidates: Dict[str, Dict[str, Any]],
                               name: str) -> Tuple[Dict[str, Any], int]:
    merged = copy.deepcopy(existing)
    added = 0
    for key, mapping in candidates.items():
        merged[key], n = _add_missing_keys(_as_dict(merged.get(key), f"{name}.{key}"), mapping)
        added += n
    return merged, added


def _record(delta: TemplateDelta, name: str, value: Any, added: int, original: Any) -> None:
    if added or value != original:
        delta.changes[name] = value
        delta.added[name] = added


def apply_delta(template: Dict[str, Any], delta: TemplateDelta) -> Dict[str, Any]:
    """Return a copy of ``template`` with the delta's fields written over it."""
    updated = copy.deepcopy(template)
    updated.update(copy.deepcopy(delta.changes))
    return updated


def merge_structural_defaults(template: Dict[str, Any]) -> TemplateDelta:
    """Fill in the category defaults a template is missing.

    This is the first-time structural upgrade: section definitions,
    component mapping, responsive layouts, base layouts, base color schemes
    and font pairings, and theme spacing presets. Present entries win.
    """
    defaults = derive_defaults(category_of(template))
    delta = TemplateDelta()

    definitions, n = _add_missing_keys(
        _as_dict(template.get("section_definitions"), "section_definitions"),
        defaults["section_definitions"],
    )
    _record(delta, "section_definitions", definitions, n, template.get("section_definitions"))

    mapping, n = _merge_mapping_of_mappings(
        _as_dict(template.get("component_mapping"), "component_mapping"),
        defaults["component_mapping"],
        "component_mapping",
    )
    _record(delta, "component_mapping", mapping, n, template.get("component_mapping"))

    responsive, n = _add_missing_keys(
        _as_dict(template.get("responsive_layouts"), "responsive_layouts"),
        defaults["responsive_layouts"],
    )
    _record(delta, "responsive_layouts", responsive, n, template.get("responsive_layouts"))

    layouts, n = _append_missing(_as_list(template.get("layouts"), "layouts"), defaults["layouts"])
    _record(delta, "layouts", layouts, n, template.get("layouts"))

    theme = _as_dict(template.get("theme_options"), "theme_options")
    base_theme = defaults["theme_options"]
    schemes, n_schemes = _append_missing(
        _as_list(theme.get("color_schemes"), "theme_options.color_schemes"), base_theme["color_schemes"])
    pairings, n_pairings = _append_missing(
        _as_list(theme.get("font_pairings"), "theme_options.font_pairings"), base_theme["font_pairings"])
    spacing, n_spacing = _add_missing_keys(
        _as_dict(theme.get("spacing"), "theme_options.spacing"), base_theme["spacing"])
    new_theme = {**copy.deepcopy(theme), "color_schemes": schemes, "font_pairings": pairings, "spacing": spacing}
    _record(delta, "theme_options", new_theme, n_schemes + n_pairings + n_spacing, template.get("theme_options"))

    return delta


def enhance(template: Dict[str, Any], *, replace_animations: bool = True) -> TemplateDelta:
    """Compute the additive upgrade for an existing template.

    For layouts, color schemes, font pairings, section variants and style
    presets only the candidates whose id (or key) is missing are appended.
    Applying the returned delta and calling ``enhance`` again yields an
    empty delta.

    ``animations`` carries no user customisation and by default is replaced
    wholesale with the fixed set on every call, unlike the other
    collections. Pass ``replace_animations=False`` to merge it by key.
    """
    category = category_of(template)
    delta = TemplateDelta()

    layouts, n = _append_missing(_as_list(template.get("layouts"), "layouts"), _enhanced_layouts(category))
    _record(delta, "layouts", layouts, n, template.get("layouts"))

    theme = _as_dict(template.get("theme_options"), "theme_options")
    schemes, n_schemes = _append_missing(
        _as_list(theme.get("color_schemes"), "theme_options.color_schemes"), _enhanced_color_schemes(category))
    pairings, n_pairings = _append_missing(
        _as_list(theme.get("font_pairings"), "theme_options.font_pairings"), _enhanced_font_pairings(category))
    if n_schemes or n_pairings:
        new_theme = {**copy.deepcopy(theme), "color_schemes": schemes, "font_pairings": pairings}
        delta.changes["theme_options"] = new_theme
        delta.added["theme_options"] = n_schemes + n_pairings

    variants, n = _merge_section_variants(
        _as_dict(template.get("section_variants"), "section_variants"), _section_variants(category))
    _record(delta, "section_variants", variants, n, template.get("section_variants"))

    presets, n = _add_missing_keys(_as_dict(template.get("style_presets"), "style_presets"),
                                   _style_presets(category))
    _record(delta, "style_presets", presets, n, template.get("style_presets"))

    current_animations = _as_dict(template.get("animations"), "animations")
    if replace_animations:
        new_keys = sum(1 for key in ANIMATIONS if key not in current_animations)
        _record(delta, "animations", copy.deepcopy(ANIMATIONS), new_keys, template.get("animations"))
    else:
        animations, n = _add_missing_keys(current_animations, ANIMATIONS)
        _record(delta, "animations", animations, n, template.get("animations"))

    if not delta.is_empty:
        logger.debug("Enhancement for '%s' touches %s", template.get("name"), sorted(delta.changes))
    return delta


# Portfolio composition

def _find_by_id(items: List[Dict[str, Any]], wanted: Optional[str], label: str) -> Dict[str, Any]:
    if not items:
        raise ValidationError(f"Template has no {label}s")
    if wanted is None:
        return next((i for i in items if i.get("id") == "default"), items[0])
    for item in items:
        if item.get("id") == wanted:
            return item
    raise ValidationError(f"Unknown {label} '{wanted}'", details={"available": [i.get("id") for i in items]})


def template_defaults(template: Dict[str, Any]) -> Dict[str, Any]:
    """The template as a portfolio sees it: stored values, holes filled from the category defaults."""
    return apply_delta(template, merge_structural_defaults(template))


def resolve_selection(template: Dict[str, Any], selection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Check a portfolio's theme choices against its template.

    Unset layout, color scheme and font pairing ids resolve to the
    ``default`` entry (or the first one). Unknown ids, style presets or
    section variants raise ``ValidationError``.
    """
    selection = selection or {}
    effective = template_defaults(template)
    theme = effective["theme_options"]

    layout = _find_by_id(effective["layouts"], selection.get("active_layout"), "layout")
    scheme = _find_by_id(theme["color_schemes"], selection.get("active_color_scheme"), "color scheme")
    pairing = _find_by_id(theme["font_pairings"], selection.get("active_font_pairing"), "font pairing")

    style_preset = selection.get("style_preset") or "modern"
    presets = effective.get("style_presets") or {}
    if selection.get("style_preset") and presets and style_preset not in presets:
        raise ValidationError(f"Unknown style preset '{style_preset}'", details={"available": sorted(presets)})

    variants = dict(selection.get("section_variants") or {})
    available = effective.get("section_variants") or {}
    for section, variant_id in variants.items():
        options = available.get(section)
        if options and variant_id not in {v.get("id") for v in options if isinstance(v, dict)}:
            raise ValidationError(f"Unknown variant '{variant_id}' for section '{section}'")

    return {
        "layout": layout,
        "color_scheme": scheme,
        "font_pairing": pairing,
        "style_preset": style_preset,
        "section_variants": variants,
        "section_definitions": effective["section_definitions"],
    }


def compose_portfolio(template: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Derive a new portfolio's settings and starting content from its template.

    ``overrides`` may carry ``active_layout``, ``active_color_scheme``,
    ``active_font_pairing``, ``style_preset``, ``animations_enabled``,
    ``section_variants``, a ``settings`` patch (colors/fonts/layout, each
    merged key by key) and ``content`` (per-section patches applied over
    the section definitions' default data with the same rules as
    ``content.update_section``, so a payload of the wrong shape or for an
    undeclared section is rejected here too).
    """
    overrides = overrides or {}
    chosen = resolve_selection(template, overrides)
    layout = chosen["layout"]

    settings = {
        "colors": dict(chosen["color_scheme"]["colors"]),
        "fonts": {k: v for k, v in chosen["font_pairing"]["fonts"].items() if v},
        "layout": {
            "sections": list((layout.get("structure") or {}).get("sections") or []),
            "show_header": True,
            "show_footer": True,
        },
    }
    patch = overrides.get("settings") or {}
    for group in ("colors", "fonts", "layout"):
        values = {k: v for k, v in (patch.get(group) or {}).items() if v is not None}
        settings[group].update(copy.deepcopy(values))

    animations_enabled = overrides.get("animations_enabled")
    if animations_enabled is None:
        animations_enabled = True

    definitions = chosen["section_definitions"]
    content = {}
    for section in settings["layout"]["sections"]:
        definition = definitions.get(section)
        if isinstance(definition, dict):
            content[section] = copy.deepcopy(definition.get("default_data") or {})
    # Sections the template defines count as declared even when the layout omits them.
    declared = {"layout": {"sections": list(settings["layout"]["sections"]) + list(definitions)}}
    for section, payload in (overrides.get("content") or {}).items():
        draft = {"section_content": content, "settings": declared}
        content[section] = update_section(draft, section, payload, authorized=True).value

    return {
        "settings": settings,
        "section_content": content,
        "active_layout": layout["id"],
        "active_color_scheme": chosen["color_scheme"]["id"],
        "active_font_pairing": chosen["font_pairing"]["id"],
        "style_preset": chosen["style_preset"],
        "animations_enabled": animations_enabled,
        "section_variants": chosen["section_variants"],
    }
