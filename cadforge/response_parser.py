"""Response parser — turn a free-text model reply into a validated Design.

Expected reply shape (see ``prompts.SYSTEM_PROMPT``)::

    <openscad>
    cube(20);
    </openscad>

    changes: made the walls thicker

    views:
    - name: "front"
      angle: [0, 0, 0]
      distance: 100

Models drift from that shape, so the views section is read with a small
grammar of tolerated surface syntaxes (``FIELD_PATTERNS``) and each entry is
checked against ``ENTRY_RULES``.  A bad entry is dropped with a warning;
too few good entries and the whole list is replaced by ``DEFAULT_VIEWS``.
Only a missing code block is fatal.
"""

import logging
import math
import re
from dataclasses import dataclass

from .errors import MissingCodeBlock
from .models import Design, ViewSpec

logger = logging.getLogger(__name__)

MIN_VIEWS = 3
DEFAULT_VIEW_DISTANCE = 100

DEFAULT_VIEWS = (
    ViewSpec("front", (0, 0, 0), DEFAULT_VIEW_DISTANCE),
    ViewSpec("top", (0, 90, 0), DEFAULT_VIEW_DISTANCE),
    ViewSpec("iso", (45, 30, 0), DEFAULT_VIEW_DISTANCE),
)


# ═══════════════════════════════════════════════════════════════════════════
# Grammar
# ═══════════════════════════════════════════════════════════════════════════

CODE_BLOCK_RE = re.compile(r"<openscad>(.*?)</openscad>", re.IGNORECASE | re.DOTALL)

# "views:", "views =", "**Views:**", "## views:", '"views": ['
VIEWS_HEADER_RE = re.compile(
    r"^[ \t#*>]*[\"']?views[\"']?\**[ \t]*[:=]\**[ \t]*(?P<rest>.*)$",
    re.IGNORECASE | re.MULTILINE,
)
CHANGES_RE = re.compile(
    r"^[ \t#*>]*changes\**[ \t]*[:=]\**[ \t]*(?P<text>\S.*?)[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)


def _key(name):
    # optionally quoted key, ":" or "=" separator
    return r"(?<!\w)[\"']?%s[\"']?\s*[:=][ \t]*" % name


_OTHER_KEY = r"[\"']?(?:angle|distance)[\"']?\s*[:=]"

# field → ordered (syntax, pattern) alternatives; first match wins
FIELD_PATTERNS = {
    "name": (
        ("double-quoted", re.compile(_key("name") + r"\"(?P<value>[^\"\n]*)\"", re.I)),
        ("single-quoted", re.compile(_key("name") + r"'(?P<value>[^'\n]*)'", re.I)),
        ("bare", re.compile(
            _key("name")
            + r"(?P<value>[^\s\"',\]}#][^,\]}\n]*?)(?=\s*(?:[,\]}]|$|%s)|\s+#)" % _OTHER_KEY,
            re.I | re.M,
        )),
    ),
    "angle": (
        ("square-bracketed", re.compile(_key("angle") + r"\[(?P<value>[^\]]*)\]", re.I)),
        ("parenthesised", re.compile(_key("angle") + r"\((?P<value>[^)]*)\)", re.I)),
    ),
    "distance": (
        ("number", re.compile(
            _key("distance")
            + r"[\"']?(?P<value>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)", re.I)),
        # anything else is captured so it can be rejected, not ignored
        ("other", re.compile(_key("distance") + r"(?P<value>[^\s,}\]]+)", re.I)),
    ),
}

_ANY_KEY_RE = re.compile(r"(?<!\w)[\"']?(?:name|angle|distance)[\"']?\s*[:=]", re.I)
_NAME_KEY_RE = re.compile(r"(?<!\w)[\"']?name[\"']?\s*[:=]", re.I)
# "- name: ...", "* name", "{", "[{", "1. name", "2) name"
_ENTRY_START_RE = re.compile(r"^\s*(?:[-*•](?![-\d.])|\[?\s*\{|\d+[.)]\s)")
_SECTION_END_RE = re.compile(r"^\s*(?:```|</?[A-Za-z])")
_OBJECT_BOUNDARY_RE = re.compile(r"\}\s*,?\s*\{")
# angle list opened but not yet closed at the end of the entry so far
_OPEN_ANGLE_RE = re.compile(_key("angle") + r"[\[(][^\])]*\Z", re.I)


# ═══════════════════════════════════════════════════════════════════════════
# Entry validation
# ═══════════════════════════════════════════════════════════════════════════

def _parse_angle(raw):
    parts = [p.strip("\"'") for p in re.split(r"[\s,]+", raw.strip()) if p.strip("\"'")]
    if len(parts) != 3:
        return None
    try:
        angle = tuple(float(p) for p in parts)
    except ValueError:
        return None
    if not all(math.isfinite(a) for a in angle):
        return None
    return angle


def _parse_distance(raw):
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    value = int(round(value))
    return value if value > 0 else None


# (reason, check): an entry must pass every check, in order
ENTRY_RULES = (
    ("missing name", lambda f: bool(f.get("name", "").strip())),
    ("missing angle", lambda f: "angle" in f),
    ("angle needs exactly 3 numbers", lambda f: _parse_angle(f["angle"]) is not None),
    ("distance must be a positive whole number",
     lambda f: "distance" not in f or _parse_distance(f["distance"]) is not None),
)


@dataclass
class ViewParseWarning:
    """A views-section entry that was skipped, and why."""
    entry: str
    reason: str

    def __str__(self):
        return "skipped view entry (%s): %s" % (self.reason, " ".join(self.entry.split()))


# ═══════════════════════════════════════════════════════════════════════════
# Parser
# ═══════════════════════════════════════════════════════════════════════════

def _sanitize_code(code):
    """Replace common Unicode look-alikes that break OpenSCAD parsing."""
    replacements = {
        '\u2212': '-',   # − (minus sign) → -
        '\u2013': '-',   # – (en dash) → -
        '\u2014': '-',   # — (em dash) → -
        '\u2018': "'",   # ' (left single quote) → '
        '\u2019': "'",   # ' (right single quote) → '
        '\u201c': '"',   # " (left double quote) → "
        '\u201d': '"',   # " (right double quote) → "
        '\u00d7': '*',   # × (multiplication sign) → *
        '\u2264': '<=',  # ≤ → <=
        '\u2265': '>=',  # ≥ → >=
        '\u2260': '!=',  # ≠ → !=
    }
    for old, new in replacements.items():
        code = code.replace(old, new)
    return code


class ResponseParser:
    """Stateless parser; an instance only carries the view policy knobs."""

    def __init__(self, min_views: int = MIN_VIEWS,
                 default_views=DEFAULT_VIEWS,
                 default_distance: int = DEFAULT_VIEW_DISTANCE):
        self.min_views = min_views
        self.default_views = tuple(default_views)
        self.default_distance = default_distance

    # ── Public API ────────────────────────────────────────────────────────

    def parse(self, raw_text: str) -> Design:
        """Parse a full model reply.

        Raises ``MissingCodeBlock`` if there is no (non-empty)
        ``<openscad>`` section; never raises for view problems.
        """
        code_match = CODE_BLOCK_RE.search(raw_text or "")
        if not code_match:
            logger.debug("Full response without code block:\n%s", raw_text)
            raise MissingCodeBlock()

        code = _sanitize_code(code_match.group(1).strip())
        if not code:
            raise MissingCodeBlock("The <openscad> section of the response is empty.")
        logger.info(f"Extracted OpenSCAD code length: {len(code)} characters")

        tail = raw_text[code_match.end():]
        header = VIEWS_HEADER_RE.search(tail)
        if header:
            section = header.group("rest") + "\n" + tail[header.end():]
            preamble = tail[:header.start()]
        else:
            section = ""
            preamble = tail

        views, warnings = self.parse_views(section)
        for warning in warnings:
            logger.warning(str(warning))

        if len(views) < self.min_views:
            logger.info(
                f"Only {len(views)} usable view(s) (need {self.min_views}), "
                f"using default views: {', '.join(v.name for v in self.default_views)}"
            )
            views = list(self.default_views)
        else:
            logger.info(f"Parsed views: {', '.join(v.name for v in views)}")

        changes_match = CHANGES_RE.search(preamble)
        changes = changes_match.group("text") if changes_match else None

        return Design(code=code, views=views, changes=changes)

    def parse_views(self, section: str) -> tuple[list[ViewSpec], list[ViewParseWarning]]:
        """Parse every entry of a views section independently.

        Returns ``(views, warnings)`` — good entries in order, plus one
        warning per rejected entry.  No default substitution here.
        """
        views, warnings = [], []
        for entry in split_entries(section):
            fields = extract_fields(entry)
            failed = next((reason for reason, check in ENTRY_RULES if not check(fields)), None)
            if failed:
                warnings.append(ViewParseWarning(entry, failed))
                continue
            distance = (_parse_distance(fields["distance"])
                        if "distance" in fields else self.default_distance)
            views.append(ViewSpec(
                name=fields["name"],
                angle=_parse_angle(fields["angle"]),
                distance=distance,
            ))
        return views, warnings


def split_entries(section: str) -> list[str]:
    """Split a views section into one text chunk per entry."""
    section = _OBJECT_BOUNDARY_RE.sub("}\n{", section or "")
    entries = []
    for line in section.splitlines():
        if _SECTION_END_RE.match(line):
            break
        if entries and _OPEN_ANGLE_RE.search("\n".join(entries[-1])):
            # one angle component per line
            entries[-1].append(line)
            continue
        stripped = line.strip()
        if not stripped.strip("[]{},"):
            continue

        has_key = _ANY_KEY_RE.search(line) is not None
        repeated_name = (
            entries
            and _NAME_KEY_RE.search(line)
            and any(_NAME_KEY_RE.search(l) for l in entries[-1])
        )
        if _ENTRY_START_RE.match(line) or repeated_name:
            entries.append([line])
        elif has_key:
            if entries:
                entries[-1].append(line)
            else:
                entries.append([line])
        elif entries:
            # prose after the list ends the section
            break
    return ["\n".join(lines) for lines in entries]


def extract_fields(entry: str) -> dict:
    """Raw string value of every field present in *entry*."""
    fields = {}
    for field_name, alternatives in FIELD_PATTERNS.items():
        for _syntax, pattern in alternatives:
            m = pattern.search(entry)
            if m:
                fields[field_name] = m.group("value").strip()
                break
    return fields


_default_parser = ResponseParser()


def parse(raw_text: str) -> Design:
    return _default_parser.parse(raw_text)
