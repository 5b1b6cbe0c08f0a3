"""Email parser — turn Gmail message payloads into readable plain text.

Gmail returns each message as a tree of MIME parts:

    {"mimeType": "multipart/alternative",
     "body": {"size": 0},
     "parts": [{"mimeType": "text/plain", "body": {"data": "<base64url>"}},
               {"mimeType": "text/html",  "body": {"data": "<base64url>"}}]}

extract_body() walks that tree, strip_html() flattens HTML, and
clean_body() trims quoted replies so a thread shows only what each
person actually wrote. Everything here is pure: no I/O, and malformed
input yields "" rather than an exception.
"""

import base64
import binascii
import re

_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_P_CLOSE_RE = re.compile(r"</p>", re.IGNORECASE)
_DIV_CLOSE_RE = re.compile(r"</div>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

_ENTITIES = [
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
]

_WROTE_RE = re.compile(r"^On .+? wrote:$")
_ORIGINAL_MESSAGE_RE = re.compile(r"^-{3,}\s*Original Message\s*-{3,}$", re.IGNORECASE)

_FROM_RE = re.compile(r"^(.+?)\s*<(.+?)>$")


def decode_data(data):
    """Decode Gmail's base64url body data to text. Returns "" on bad input."""
    if not data or not isinstance(data, str):
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def _part_data(part):
    body = part.get("body") if isinstance(part, dict) else None
    if not isinstance(body, dict):
        return None
    return body.get("data") or None


def _child_parts(payload):
    parts = payload.get("parts") if isinstance(payload, dict) else None
    if not isinstance(parts, list):
        return []
    return [p for p in parts if isinstance(p, dict)]


def extract_body(payload):
    """Return the best plain-text body for a message payload.

    Order of preference:
      1. the payload's own body data
      2. first text/plain child
      3. first text/html child, tag-stripped
      4. first non-empty result from a nested multipart child
      5. first child with any data at all
    """
    if not isinstance(payload, dict):
        return ""

    data = _part_data(payload)
    if data:
        return decode_data(data)

    parts = _child_parts(payload)
    if not parts:
        return ""

    for part in parts:
        if part.get("mimeType") == "text/plain" and _part_data(part):
            return decode_data(_part_data(part))

    for part in parts:
        if part.get("mimeType") == "text/html" and _part_data(part):
            return strip_html(decode_data(_part_data(part)))

    for part in parts:
        if _child_parts(part):
            nested = extract_body(part)
            if nested:
                return nested

    for part in parts:
        if _part_data(part):
            return decode_data(_part_data(part))

    return ""


def strip_html(html):
    """Flatten HTML to text: drop style/script, keep paragraph breaks."""
    if not html:
        return ""

    text = _STYLE_RE.sub("", html)
    text = _SCRIPT_RE.sub("", text)
    text = _BR_RE.sub("\n", text)
    text = _P_CLOSE_RE.sub("\n\n", text)
    text = _DIV_CLOSE_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def clean_body(body):
    """Remove quoted reply text from a message body.

    - "On <date>, <someone> wrote:" drops that line and everything after it
    - lines starting with ">" (any depth) are dropped
    - a "----- Original Message -----" line drops everything after it
    """
    if not body:
        return ""

    kept = []
    for line in body.strip().splitlines():
        stripped = line.strip()
        if _WROTE_RE.match(stripped):
            break
        if _ORIGINAL_MESSAGE_RE.match(stripped):
            break
        if stripped.startswith(">"):
            continue
        kept.append(line)

    return "\n".join(kept).strip()


def render_body(payload):
    """extract_body() followed by clean_body(), as shown in the inbox."""
    return clean_body(extract_body(payload))


def parse_from_header(value):
    """Split a From header into (display name, address).

    "Jane Doe" <jane@example.com>  ->  ("Jane Doe", "jane@example.com")
    jane@example.com               ->  ("jane@example.com", "jane@example.com")
    """
    value = (value or "").strip()
    match = _FROM_RE.match(value)
    if match:
        return match.group(1).replace('"', "").strip(), match.group(2).strip()
    return value, value


def get_header(headers, name):
    """Case-insensitive lookup in Gmail's [{name, value}] header list."""
    for header in headers or []:
        if isinstance(header, dict) and (header.get("name") or "").lower() == name.lower():
            return header.get("value") or ""
    return ""
