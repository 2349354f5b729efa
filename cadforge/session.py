"""Design session — the create → render → feedback → revise loop.

State machine
─────────────
  Empty ──start_session──▶ HasSession(1)
  HasSession(n) ──continue_session──▶ HasSession(n + 1)

``continue_session`` needs the latest iteration to be rendered, and
``attach_renders`` may only run once per iteration.  The session lives in a
single JSON file owned by ``SessionStore``; ``DesignSession`` is the
caller-held handle around it (there is no module-level "current session").
"""

import json
import logging
import os
from pathlib import Path

from .errors import (
    EmptyHistory,
    NoActiveIteration,
    NoRendersYet,
    NoSessionFound,
    RendersAlreadyAttached,
)
from .llm_client import collect_response
from .models import Design, Iteration, RenderResult, Session
from .prompts import SYSTEM_PROMPT, format_initial_prompt, format_iteration_message
from .response_parser import ResponseParser

logger = logging.getLogger(__name__)


class SessionStore:
    """Whole-document JSON persistence for one Session."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Session:
        """Read the persisted session.

        Any failure (no file, unreadable, bad JSON, wrong shape) is reported
        the same way, as ``NoSessionFound``.
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                return Session.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug(f"Could not load session from {self.path}: {e}")
            raise NoSessionFound() from e

    def save(self, session: Session):
        """Overwrite the stored session (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(session.to_dict(), f, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved session {session.id} to {self.path}")


class DesignSession:
    """Drives one design through its iterations.

    *client* needs a ``stream(system, content)`` method yielding text
    fragments (see ``llm_client.AnthropicClient``).  *on_chunk* receives
    each fragment as it arrives, e.g. to echo the reply to a terminal.
    """

    def __init__(self, client, store: SessionStore, parser: ResponseParser | None = None,
                 on_chunk=None):
        self.client = client
        self.store = store
        self.parser = parser or ResponseParser()
        self.on_chunk = on_chunk
        self._session = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def latest(self) -> Iteration | None:
        return self._session.latest if self._session else None

    def load(self) -> Session:
        """Adopt the persisted session as this handle's state."""
        self._session = self.store.load()
        return self._session

    # ── Model round-trip ──────────────────────────────────────────────────

    def _request_design(self, content) -> Design:
        raw = collect_response(self.client.stream(SYSTEM_PROMPT, content),
                               on_chunk=self.on_chunk)
        return self.parser.parse(raw)

    def _append(self, session: Session, design: Design, feedback: str | None = None):
        session.iterations.append(Iteration(
            code=design.code,
            views=list(design.views),
            feedback=feedback,
            changes_summary=design.changes,
        ))
        self.store.save(session)
        self._session = session
        logger.info(f"Session {session.id}: iteration {len(session.iterations)} recorded")

    # ── Operations ────────────────────────────────────────────────────────

    def start_session(self, prompt: str) -> Design:
        """Start a fresh design from *prompt*, replacing any stored session.

        Nothing is written unless the model reply parses.
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValueError("prompt must not be empty")

        session = Session(original_prompt=prompt)
        design = self._request_design(format_initial_prompt(prompt))
        self._append(session, design)
        return design

    def continue_session(self, feedback: str) -> Design:
        """Revise the stored design using *feedback* and its latest renders."""
        session = self.store.load()
        if not session.iterations:
            raise EmptyHistory()
        last = session.iterations[-1]
        if not last.renders:
            raise NoRendersYet()

        content = format_iteration_message(
            session.original_prompt, last.code, feedback, last.renders,
        )
        design = self._request_design(content)
        self._append(session, design, feedback=feedback)
        return design

    def attach_renders(self, renders: list[RenderResult]):
        """Record *renders* on the latest iteration (once) and persist."""
        if self._session is None or not self._session.iterations:
            raise NoActiveIteration()
        last = self._session.iterations[-1]
        if last.renders:
            raise RendersAlreadyAttached()
        renders = list(renders)
        if not renders:
            raise ValueError("no renders to attach")
        if last.views:
            known = {v.name for v in last.views}
            unknown = [r.view for r in renders if r.view not in known]
            if unknown:
                raise ValueError("renders for unknown view(s): %s" % ", ".join(unknown))

        last.renders = renders
        self.store.save(self._session)
        logger.info(f"Attached {len(renders)} render(s) to iteration "
                    f"{len(self._session.iterations)}")
