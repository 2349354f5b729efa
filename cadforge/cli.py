"""cad-forge — command-line front end.

    cad-forge create "a 20mm cube with a 5mm hole"   # new design
    cad-forge iterate "make the walls thicker"       # revise with feedback
    cad-forge status                                  # show the current session

Every command exits non-zero if anything fails.
"""

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import (
    API_KEY_ENV_VAR,
    get_api_key,
    load_config,
    renders_dir,
    setup_logging,
    state_file,
)
from .errors import CadForgeError
from .llm_client import AnthropicClient
from .renderer import OpenSCADRenderer
from .session import DesignSession, SessionStore

logger = logging.getLogger(__name__)


# Colors for terminal output
class C:
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    DIM = "\033[2m"
    END = "\033[0m"

    @staticmethod
    def ok(msg): return f"{C.GREEN}✓{C.END} {msg}"
    @staticmethod
    def warn(msg): return f"{C.YELLOW}⚠{C.END} {msg}"
    @staticmethod
    def err(msg): return f"{C.RED}✗{C.END} {msg}"
    @staticmethod
    def info(msg): return f"{C.BLUE}ℹ{C.END} {msg}"
    @staticmethod
    def step(n, msg): return f"{C.CYAN}[{n}]{C.END} {C.BOLD}{msg}{C.END}"


class _StreamEcho:
    """Echo streamed fragments to stdout, collapsing runs of bare newlines."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self.last_was_newline = False

    def __call__(self, text):
        if text == "\n":
            if self.last_was_newline:
                return
            self.last_was_newline = True
        else:
            self.last_was_newline = False
        self.out.write(text)
        self.out.flush()

    def finish(self):
        if not self.last_was_newline:
            self.out.write("\n")


# ── Wiring ────────────────────────────────────────────────────────────────

def _build(config: dict):
    """Check preconditions and build (session, renderer, echo)."""
    api_key = get_api_key()
    if not api_key:
        raise CadForgeError(
            f"{API_KEY_ENV_VAR} environment variable is required.\n"
            f"  export {API_KEY_ENV_VAR}=your-api-key-here"
        )

    renderer = OpenSCADRenderer(config, renders_root=renders_dir(config))
    version = renderer.probe()
    logger.debug(f"Using {version}")

    echo = _StreamEcho()
    session = DesignSession(
        AnthropicClient(config, api_key),
        SessionStore(state_file(config)),
        on_chunk=echo,
    )
    return session, renderer, echo


def _render_and_attach(session: DesignSession, renderer: OpenSCADRenderer, design):
    print(f"\n{C.step(2, 'Rendering views...')}")
    renders = renderer.render_all(design)
    session.attach_renders(renders)
    return renders


def _print_result(design, renders, headline):
    print(f"\n{C.ok(headline)}")
    if design.changes:
        print(f"\n  {C.BOLD}Changes:{C.END} {design.changes}")
    print(f"\n{C.BOLD}OpenSCAD code:{C.END}")
    print(design.code)
    print(f"\n{C.BOLD}Renders:{C.END}")
    for r in renders:
        print(f"  {r.view:.<20s} {r.path or '(not saved)'}")


# ── Commands ──────────────────────────────────────────────────────────────

def cmd_create(args, config):
    """Create a new CAD model from a prompt."""
    session, renderer, echo = _build(config)

    print(C.step(1, "Generating model..."))
    try:
        design = session.start_session(args.prompt)
    finally:
        echo.finish()

    renders = _render_and_attach(session, renderer, design)
    _print_result(design, renders, "Model created successfully!")


def cmd_iterate(args, config):
    """Improve the existing model based on feedback."""
    session, renderer, echo = _build(config)

    print(C.step(1, "Loading previous model and generating revision..."))
    try:
        design = session.continue_session(args.feedback)
    finally:
        echo.finish()

    renders = _render_and_attach(session, renderer, design)
    _print_result(design, renders, "Model updated successfully!")


def cmd_status(args, config):
    """Show the current session."""
    store = SessionStore(state_file(config))
    session = store.load()

    print(f"\n{C.BOLD}{'═' * 60}{C.END}")
    print(f"{C.BOLD}  cad-forge — Session {session.id}{C.END}")
    print(f"{C.BOLD}{'═' * 60}{C.END}\n")
    print(f"  Prompt:     {session.original_prompt}")
    print(f"  Iterations: {len(session.iterations)}")
    print(f"  State file: {store.path}\n")

    for n, it in enumerate(session.iterations, 1):
        label = "create" if it.feedback is None else f"feedback: {it.feedback}"
        print(f"  {C.BOLD}#{n}{C.END} {C.DIM}{it.timestamp}{C.END}  {label}")
        if it.changes_summary:
            print(f"     changes: {it.changes_summary}")
        print(f"     code: {len(it.code)} characters, "
              f"views: {', '.join(v.name for v in it.views) or '-'}")
        if it.renders:
            for r in it.renders:
                print(f"     {r.view:.<20s} {C.ok(r.path or 'in state file')}")
        else:
            print(f"     {C.warn('not rendered yet')}")
    print()


# ── Main ──────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cad-forge",
        description="cad-forge — iterate on OpenSCAD models with an AI designer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cad-forge create "a 20mm cube"           Generate and render a new model
  cad-forge iterate "round the edges"      Revise the last model
  cad-forge status                         Show the session history
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--config", type=Path, default=None,
                        help="Config file (default: ./config.yaml if present)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    sub = subparsers.add_parser("create", help="Create a new CAD model")
    sub.add_argument("prompt", help="Description of the model")

    sub = subparsers.add_parser("iterate", help="Improve existing model based on feedback")
    sub.add_argument("feedback", help="What to change")

    subparsers.add_parser("status", help="Show the current session")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "create": cmd_create,
        "iterate": cmd_iterate,
        "status": cmd_status,
    }

    try:
        config = load_config(args.config)
        commands[args.command](args, config)
    except (CadForgeError, ValueError, OSError) as e:
        print(C.err(f"Error: {e}"), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
