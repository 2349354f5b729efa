"""Exception types raised by the cad-forge iteration engine.

Every error carries a message that can be shown to the user as-is; the CLI
prints ``str(exc)`` and exits non-zero.
"""


class CadForgeError(Exception):
    """Base class for all cad-forge failures."""


# ── Response parsing ──────────────────────────────────────────────────────

class MissingCodeBlock(CadForgeError):
    def __init__(self, message=None):
        super().__init__(
            message
            or "Could not find OpenSCAD code section. "
               "Response must include <openscad> tags."
        )


# ── Session preconditions ─────────────────────────────────────────────────

class NoSessionFound(CadForgeError):
    def __init__(self, message=None):
        super().__init__(message or 'No existing CAD session found. Use "create" first.')


class EmptyHistory(CadForgeError):
    def __init__(self, message=None):
        super().__init__(message or 'No previous model found. Use "create" first.')


class NoRendersYet(CadForgeError):
    def __init__(self, message=None):
        super().__init__(message or "No renders found from previous iteration")


class NoActiveIteration(CadForgeError):
    def __init__(self, message=None):
        super().__init__(message or "No iteration to attach renders to")


class RendersAlreadyAttached(CadForgeError):
    def __init__(self, message=None):
        super().__init__(message or "Renders are already attached to the latest iteration")


# ── Rendering ─────────────────────────────────────────────────────────────

class RendererUnavailable(CadForgeError):
    def __init__(self, message=None):
        super().__init__(message or "OpenSCAD must be installed and available in PATH")


class RenderFailed(CadForgeError):
    """A single view failed to render; the whole batch is aborted."""

    def __init__(self, view, cause):
        self.view = view
        self.cause = cause
        super().__init__("Failed to render view %s: %s" % (view, cause))


class RenderCancelled(RenderFailed):
    def __init__(self, view):
        super().__init__(view, "render cancelled")


# ── Text generation ───────────────────────────────────────────────────────

class ModelServiceError(CadForgeError):
    """The text-generation service returned an error or an unusable stream."""
