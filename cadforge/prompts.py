"""Prompt text sent to the model.

The response grammar described here is what ``response_parser`` accepts:
an ``<openscad>`` block, an optional ``changes:`` line and a ``views:``
list.  Change one and you must change the other.
"""

from .models import RenderResult

_FORMAT_EXAMPLE = """<openscad>
// OpenSCAD code here
</openscad>

changes: one line summarising what changed (omit for a new design)

views:
- name: "front"
  angle: [0, 0, 0]
  distance: 100
- name: "top"
  angle: [0, 90, 0]
  distance: 100
- name: "iso"
  angle: [45, 30, 0]
  distance: 100"""


SYSTEM_PROMPT = """You are an expert CAD designer using OpenSCAD. Your task is to generate 3D models based on descriptions and iteratively improve them based on feedback.

CRITICAL: Your responses must exactly follow this format, with no deviations:

<openscad>
// Your OpenSCAD code here
// Use precise measurements
// Follow OpenSCAD best practices
// Consider printability
</openscad>

changes: one line summarising what changed (omit for a new design)

views:
- name: "front"
  angle: [0, 0, 0]
  distance: 100
- name: "top"
  angle: [0, 90, 0]
  distance: 100
- name: "iso"
  angle: [45, 30, 0]
  distance: 100

VIEW RULES:
  • Give at least 3 views. Each view needs a name and an angle of exactly
    3 numbers: [azimuth, elevation, tilt] in degrees.
  • azimuth 0 looks at the front (from -Y), 90 looks from the right (+X).
  • elevation 0 is level, 90 looks straight down.
  • distance is optional (default 100) and must be a positive whole number.
  • The names front, back, left, right, top, bottom and iso always render
    as the standard views.

Do not add any text between sections. Maintain exact indentation as shown."""


def format_initial_prompt(prompt: str) -> str:
    return (
        "Design a 3D model based on this description:\n"
        f"{prompt}\n\n"
        "IMPORTANT: Your response must follow this exact format:\n\n"
        f"{_FORMAT_EXAMPLE}\n\n"
        "Do not include any other text between these sections."
    )


def text_part(text: str) -> dict:
    return {"type": "text", "text": text}


def image_part(render: RenderResult) -> dict:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": "image/png",
            "data": render.image_base64,
        },
    }


def format_iteration_message(original_prompt: str, latest_code: str,
                             feedback: str, renders: list[RenderResult]) -> list[dict]:
    """Build the multi-part feedback request.

    Order: prompt / previous code / feedback text, then every render as an
    image followed by its view label, then the closing instruction.
    """
    content = [text_part(
        f"Original request: {original_prompt}\n\n"
        f"Previous OpenSCAD code:\n{latest_code}\n\n"
        f"User feedback:\n{feedback}\n\n"
        "Please analyze the following renders and make the requested improvements:"
    )]

    for render in renders:
        content.append(image_part(render))
        content.append(text_part(f"↑ {render.view} view"))

    content.append(text_part(
        "Provide updated OpenSCAD code, a changes line and view "
        "specifications following the standard format."
    ))
    return content
