"""
Accessibility rule catalog.

Rule ids, impacts and WCAG references follow axe-core naming so reports
line up with what developers see in browser tooling. Each check returns
the CSS-ish targets of the offending nodes; an empty list means the rule
passed.
"""
import re
from collections import Counter
from typing import Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from sitemap_audit.features.audit.schemas.audit import AccessibilityFinding, Severity

IMPACT_TO_SEVERITY = {
    "critical": Severity.critical,
    "serious": Severity.critical,
    "moderate": Severity.warning,
    "minor": Severity.info,
}

ACCESSIBILITY_RULES: Dict[str, Dict[str, str]] = {
    "image-alt": {
        "impact": "critical",
        "wcag": "WCAG 2.1 1.1.1",
        "description": "Images must have alternate text",
    },
    "label": {
        "impact": "critical",
        "wcag": "WCAG 2.1 4.1.2",
        "description": "Form elements must have labels",
    },
    "button-name": {
        "impact": "critical",
        "wcag": "WCAG 2.1 4.1.2",
        "description": "Buttons must have discernible text",
    },
    "link-name": {
        "impact": "serious",
        "wcag": "WCAG 2.1 2.4.4",
        "description": "Links must have discernible text",
    },
    "empty-heading": {
        "impact": "minor",
        "wcag": "WCAG 2.1 1.3.1",
        "description": "Headings should not be empty",
    },
    "html-has-lang": {
        "impact": "serious",
        "wcag": "WCAG 2.1 3.1.1",
        "description": "<html> element must have a lang attribute",
    },
    "document-title": {
        "impact": "serious",
        "wcag": "WCAG 2.1 2.4.2",
        "description": "Documents must have a <title> element",
    },
    "landmark-one-main": {
        "impact": "moderate",
        "wcag": "WCAG 2.1 1.3.1",
        "description": "Document should have exactly one main landmark",
    },
    "heading-order": {
        "impact": "moderate",
        "wcag": "WCAG 2.1 1.3.1",
        "description": "Heading levels should only increase by one",
    },
    "duplicate-id": {
        "impact": "minor",
        "wcag": "WCAG 2.1 4.1.1",
        "description": "id attribute values must be unique",
    },
    "aria-roles": {
        "impact": "critical",
        "wcag": "WCAG 2.1 4.1.2",
        "description": "ARIA roles used must conform to valid values",
    },
    "aria-hidden-focus": {
        "impact": "serious",
        "wcag": "WCAG 2.1 4.1.2",
        "description": "aria-hidden elements must not contain focusable elements",
    },
    "color-contrast": {
        "impact": "serious",
        "wcag": "WCAG 2.1 1.4.3",
        "description": "Elements must meet minimum color contrast ratio thresholds",
    },
    "meta-viewport": {
        "impact": "critical",
        "wcag": "WCAG 2.1 1.4.4",
        "description": "Zooming and scaling must not be disabled",
    },
}

VALID_ARIA_ROLES = frozenset("""
    alert alertdialog application article banner blockquote button caption
    cell checkbox code columnheader combobox complementary contentinfo
    definition deletion dialog directory document emphasis feed figure form
    generic grid gridcell group heading img insertion link list listbox
    listitem log main marquee math menu menubar menuitem menuitemcheckbox
    menuitemradio meter navigation none note option paragraph presentation
    progressbar radio radiogroup region row rowgroup rowheader scrollbar
    search searchbox separator slider spinbutton status strong subscript
    superscript switch tab table tablist tabpanel term textbox time timer
    toolbar tooltip tree treegrid treeitem
""".split())

MIN_CONTRAST_RATIO = 4.5
MAX_TARGETS = 10

_NAMED_COLORS = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "silver": (192, 192, 192),
    "orange": (255, 165, 0),
}
_RGB_RE = re.compile(r"rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})")


def describe(node: Tag) -> str:
    """Short selector-like label for a node: tag#id, tag.class or tag[src]."""
    if node.get("id"):
        return f"{node.name}#{node['id']}"
    classes = node.get("class")
    if classes:
        return f"{node.name}.{'.'.join(classes)}"
    for attr in ("name", "src", "href"):
        if node.get(attr):
            return f'{node.name}[{attr}="{node[attr]}"]'
    return node.name


def _has_accessible_name(node: Tag) -> bool:
    for attr in ("aria-label", "aria-labelledby", "title"):
        if (node.get(attr) or "").strip():
            return True
    return False


def _is_hidden(node: Tag) -> bool:
    return (node.get("aria-hidden") or "").lower() == "true"


def check_image_alt(soup: BeautifulSoup) -> List[str]:
    # alt="" is a valid way to mark decorative images
    return [
        describe(img) for img in soup.find_all("img")
        if img.get("alt") is None
        and not _has_accessible_name(img)
        and (img.get("role") or "").lower() not in ("presentation", "none")
        and not _is_hidden(img)
    ]


def check_label(soup: BeautifulSoup) -> List[str]:
    labelled_ids = {label.get("for") for label in soup.find_all("label") if label.get("for")}
    skipped_types = {"hidden", "submit", "button", "reset", "image"}

    offenders = []
    for field in soup.find_all(["input", "select", "textarea"]):
        if field.name == "input" and (field.get("type") or "text").lower() in skipped_types:
            continue
        if _has_accessible_name(field):
            continue
        if field.get("id") and field["id"] in labelled_ids:
            continue
        if field.find_parent("label"):
            continue
        offenders.append(describe(field))
    return offenders


def check_button_name(soup: BeautifulSoup) -> List[str]:
    offenders = []
    for button in soup.find_all("button"):
        if button.get_text(strip=True) or _has_accessible_name(button):
            continue
        if button.find("img", alt=lambda v: bool(v and v.strip())):
            continue
        offenders.append(describe(button))

    # submit and reset inputs get a default label from the browser
    for button in soup.find_all("input", type=lambda v: (v or "").lower() == "button"):
        if not (button.get("value") or "").strip() and not _has_accessible_name(button):
            offenders.append(describe(button))
    return offenders


def check_link_name(soup: BeautifulSoup) -> List[str]:
    offenders = []
    for link in soup.find_all("a", href=True):
        if _is_hidden(link):
            continue
        if link.get_text(strip=True) or _has_accessible_name(link):
            continue
        if link.find("img", alt=lambda v: bool(v and v.strip())):
            continue
        offenders.append(describe(link))
    return offenders


def check_empty_heading(soup: BeautifulSoup) -> List[str]:
    return [
        describe(h) for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
        if not h.get_text(strip=True) and not _has_accessible_name(h)
    ]


def check_html_has_lang(soup: BeautifulSoup) -> List[str]:
    html = soup.find("html")
    if html is None or not (html.get("lang") or "").strip():
        return ["html"]
    return []


def check_document_title(soup: BeautifulSoup) -> List[str]:
    title = soup.find("title")
    if title is None or not title.get_text(strip=True):
        return ["html"]
    return []


def check_landmark_one_main(soup: BeautifulSoup) -> List[str]:
    mains = soup.find_all("main") + soup.find_all(
        lambda tag: tag.name != "main" and (tag.get("role") or "").lower() == "main")
    if len(mains) == 1:
        return []
    if not mains:
        return ["html"]
    return [describe(m) for m in mains]


def check_heading_order(soup: BeautifulSoup) -> List[str]:
    offenders = []
    previous_level = None
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        level = int(heading.name[1])
        if previous_level is not None and level > previous_level + 1:
            offenders.append(describe(heading))
        previous_level = level
    return offenders


def check_duplicate_id(soup: BeautifulSoup) -> List[str]:
    counts = Counter(node["id"] for node in soup.find_all(id=True) if node["id"].strip())
    return [f"#{node_id}" for node_id, count in counts.items() if count > 1]


def check_aria_roles(soup: BeautifulSoup) -> List[str]:
    offenders = []
    for node in soup.find_all(role=True):
        roles = node["role"].lower().split()
        if not roles or any(role not in VALID_ARIA_ROLES for role in roles):
            offenders.append(describe(node))
    return offenders


def _is_focusable(node: Tag) -> bool:
    if node.has_attr("disabled"):
        return False
    tabindex = node.get("tabindex")
    if tabindex is not None:
        try:
            return int(tabindex) >= 0
        except ValueError:
            return False
    if node.name == "a":
        return node.has_attr("href")
    if node.name == "input":
        return (node.get("type") or "").lower() != "hidden"
    return node.name in ("button", "select", "textarea")


def check_aria_hidden_focus(soup: BeautifulSoup) -> List[str]:
    offenders = []
    for hidden in soup.find_all(attrs={"aria-hidden": lambda v: (v or "").lower() == "true"}):
        nodes = [hidden] + hidden.find_all(True)
        if any(_is_focusable(node) for node in nodes):
            offenders.append(describe(hidden))
    return offenders


def parse_color(value: str) -> Optional[Tuple[int, int, int]]:
    value = value.strip().lower()
    if value in _NAMED_COLORS:
        return _NAMED_COLORS[value]
    if value.startswith("#"):
        hex_value = value[1:]
        if len(hex_value) == 3:
            hex_value = "".join(c * 2 for c in hex_value)
        if len(hex_value) == 6:
            try:
                return tuple(int(hex_value[i:i + 2], 16) for i in (0, 2, 4))
            except ValueError:
                return None
        return None
    match = _RGB_RE.match(value)
    if match:
        return tuple(min(int(part), 255) for part in match.groups())
    return None


def _relative_luminance(rgb: Tuple[int, int, int]) -> float:
    channels = []
    for channel in rgb:
        c = channel / 255
        channels.append(c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4)
    r, g, b = channels
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(foreground: Tuple[int, int, int], background: Tuple[int, int, int]) -> float:
    lighter, darker = sorted(
        (_relative_luminance(foreground), _relative_luminance(background)), reverse=True)
    return (lighter + 0.05) / (darker + 0.05)


def _inline_style(node: Tag) -> Dict[str, str]:
    declarations = {}
    for declaration in (node.get("style") or "").split(";"):
        if ":" in declaration:
            prop, value = declaration.split(":", 1)
            declarations[prop.strip().lower()] = value.strip()
    return declarations


def check_color_contrast(soup: BeautifulSoup) -> List[str]:
    # Only inline colors are known without a layout engine
    offenders = []
    for node in soup.find_all(style=True):
        style = _inline_style(node)
        foreground = parse_color(style.get("color", ""))
        background = parse_color(style.get("background-color", style.get("background", "")))
        if foreground is None or background is None:
            continue
        if not node.get_text(strip=True):
            continue
        if contrast_ratio(foreground, background) < MIN_CONTRAST_RATIO:
            offenders.append(describe(node))
    return offenders


def check_meta_viewport(soup: BeautifulSoup) -> List[str]:
    tag = soup.find("meta", attrs={"name": re.compile(r"^viewport$", re.I)})
    if tag is None:
        return []

    properties = {}
    for part in (tag.get("content") or "").split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            properties[key.strip().lower()] = value.strip().lower()

    if properties.get("user-scalable") in ("no", "0"):
        return ['meta[name="viewport"]']
    try:
        if "maximum-scale" in properties and float(properties["maximum-scale"]) < 2:
            return ['meta[name="viewport"]']
    except ValueError:
        pass
    return []


RULE_CHECKS: Dict[str, Callable[[BeautifulSoup], List[str]]] = {
    "image-alt": check_image_alt,
    "label": check_label,
    "button-name": check_button_name,
    "link-name": check_link_name,
    "empty-heading": check_empty_heading,
    "html-has-lang": check_html_has_lang,
    "document-title": check_document_title,
    "landmark-one-main": check_landmark_one_main,
    "heading-order": check_heading_order,
    "duplicate-id": check_duplicate_id,
    "aria-roles": check_aria_roles,
    "aria-hidden-focus": check_aria_hidden_focus,
    "color-contrast": check_color_contrast,
    "meta-viewport": check_meta_viewport,
}


def build_finding(rule_id: str, targets: List[str]) -> AccessibilityFinding:
    rule = ACCESSIBILITY_RULES[rule_id]
    return AccessibilityFinding(
        rule_id=rule_id,
        severity=IMPACT_TO_SEVERITY[rule["impact"]],
        impact=rule["impact"],
        wcag=rule["wcag"],
        description=rule["description"],
        nodes=len(targets),
        targets=targets[:MAX_TARGETS],
    )
