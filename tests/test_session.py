"""Tests for the design session state machine and its persistence."""

import json

import pytest

from cadforge.errors import (
    EmptyHistory,
    MissingCodeBlock,
    NoActiveIteration,
    NoRendersYet,
    NoSessionFound,
    RendersAlreadyAttached,
)
from cadforge.models import Iteration, RenderResult, Session, ViewSpec
from cadforge.prompts import SYSTEM_PROMPT
from cadforge.session import DesignSession, SessionStore


def _renders(*names):
    return [RenderResult(view=n, image=b"\x89PNG" + n.encode()) for n in names]


def _rendered_session(store, cube_reply, make_client):
    ds = DesignSession(make_client(cube_reply), store)
    ds.start_session("a 20mm cube")
    ds.attach_renders(_renders("front", "top", "iso"))
    return ds


# ── SessionStore ──────────────────────────────────────────────────────────

def test_store_round_trip(store):
    session = Session(original_prompt="a bracket")
    session.iterations.append(Iteration(
        code="cube(1);",
        views=[ViewSpec("front", (0, 0, 0))],
        renders=_renders("front"),
        changes_summary="first cut",
    ))
    store.save(session)
    loaded = store.load()
    assert loaded == session
    assert loaded.iterations[0].renders[0].image == b"\x89PNGfront"


def test_store_writes_original_key_names(store):
    store.save(Session(original_prompt="x", id="abc"))
    data = json.loads(store.path.read_text())
    assert data == {"id": "abc", "originalPrompt": "x", "iterations": []}


def test_store_load_missing_file(store):
    assert not store.exists()
    with pytest.raises(NoSessionFound):
        store.load()


@pytest.mark.parametrize("content", ["{not json", "[]", '{"id": "x"}',
                                     '{"id": "x", "originalPrompt": "p", '
                                     '"iterations": [{"code": "c", "views": '
                                     '[{"name": "a", "angle": [1, 2]}]}]}'])
def test_store_load_corrupt_file(store, content):
    store.path.parent.mkdir(parents=True)
    store.path.write_text(content)
    with pytest.raises(NoSessionFound):
        store.load()


def test_store_loads_legacy_changes_key(store):
    store.path.parent.mkdir(parents=True)
    store.path.write_text(json.dumps({
        "id": "legacy", "originalPrompt": "p",
        "iterations": [{"timestamp": "2024-01-01T00:00:00Z", "code": "cube(1);",
                        "renders": [], "changes": "old style"}],
    }))
    it = store.load().iterations[0]
    assert it.changes_summary == "old style"
    assert it.views == []


# ── start_session ─────────────────────────────────────────────────────────

def test_start_session_records_first_iteration(store, cube_reply, make_client):
    client = make_client(cube_reply)
    ds = DesignSession(client, store)
    design = ds.start_session("a 20mm cube")

    assert "cube(" in design.code
    assert [v.name for v in design.views] == ["front", "top", "iso"]

    assert client.calls[0]["system"] == SYSTEM_PROMPT
    assert "a 20mm cube" in client.calls[0]["content"]

    saved = store.load()
    assert saved.original_prompt == "a 20mm cube"
    assert len(saved.iterations) == 1
    first = saved.iterations[0]
    assert first.code == design.code
    assert first.renders == []
    assert first.feedback is None
    assert ds.session == saved


def test_start_session_forwards_fragments(store, cube_reply, make_client):
    seen = []
    ds = DesignSession(make_client(cube_reply), store, on_chunk=seen.append)
    ds.start_session("a 20mm cube")
    assert len(seen) > 1
    assert "".join(seen) == cube_reply


def test_start_session_replaces_previous_session(store, cube_reply, make_client):
    first = _rendered_session(store, cube_reply, make_client).session.id
    ds = DesignSession(make_client(cube_reply), store)
    ds.start_session("a sphere")
    saved = store.load()
    assert saved.id != first
    assert saved.original_prompt == "a sphere"
    assert len(saved.iterations) == 1


def test_start_session_parse_failure_keeps_stored_session(store, cube_reply, make_client):
    _rendered_session(store, cube_reply, make_client)
    before = store.path.read_bytes()

    ds = DesignSession(make_client("I cannot help with that."), store)
    with pytest.raises(MissingCodeBlock):
        ds.start_session("a sphere")
    assert store.path.read_bytes() == before
    assert ds.session is None


def test_start_session_rejects_empty_prompt(store, make_client):
    with pytest.raises(ValueError):
        DesignSession(make_client(), store).start_session("   ")


# ── continue_session ──────────────────────────────────────────────────────

def test_continue_without_stored_session(store, make_client):
    with pytest.raises(NoSessionFound):
        DesignSession(make_client(), store).continue_session("thicker")


def test_continue_with_empty_history(store, make_client):
    store.save(Session(original_prompt="x"))
    with pytest.raises(EmptyHistory):
        DesignSession(make_client(), store).continue_session("thicker")


def test_continue_before_render_leaves_state_untouched(store, cube_reply, make_client):
    DesignSession(make_client(cube_reply), store).start_session("a 20mm cube")
    before = store.path.read_bytes()

    client = make_client()
    with pytest.raises(NoRendersYet):
        DesignSession(client, store).continue_session("make the walls thicker")
    assert store.path.read_bytes() == before
    assert client.calls == []


def test_continue_sends_prompt_code_feedback_and_images(
        store, cube_reply, thick_walls_reply, make_client):
    first = _rendered_session(store, cube_reply, make_client)
    prior_code = first.latest.code

    client = make_client(thick_walls_reply)
    ds = DesignSession(client, store)
    design = ds.continue_session("make the walls thicker")

    content = client.calls[0]["content"]
    intro = content[0]
    assert intro["type"] == "text"
    prompt_at = intro["text"].index("a 20mm cube")
    code_at = intro["text"].index(prior_code)
    feedback_at = intro["text"].index("make the walls thicker")
    assert prompt_at < code_at < feedback_at

    images = content[1:-1]
    assert [p["type"] for p in images] == ["image", "text"] * 3
    assert [p["text"] for p in images[1::2]] == ["↑ front view", "↑ top view", "↑ iso view"]
    assert images[0]["source"]["media_type"] == "image/png"
    assert images[0]["source"]["data"] == _renders("front")[0].image_base64
    assert content[-1]["type"] == "text"

    saved = store.load()
    assert len(saved.iterations) == 2
    latest = saved.iterations[-1]
    assert latest.feedback == "make the walls thicker"
    assert latest.renders == []
    assert latest.code == design.code
    assert latest.changes_summary == "walls thickened from 2mm to 3mm"
    # earlier iteration untouched
    assert len(saved.iterations[0].renders) == 3


# ── attach_renders ────────────────────────────────────────────────────────

def test_attach_before_any_iteration(store, make_client):
    with pytest.raises(NoActiveIteration):
        DesignSession(make_client(), store).attach_renders(_renders("front"))


def test_attach_twice_is_rejected(store, cube_reply, make_client):
    ds = _rendered_session(store, cube_reply, make_client)
    with pytest.raises(RendersAlreadyAttached):
        ds.attach_renders(_renders("front", "top", "side"))
    assert [r.view for r in store.load().latest.renders] == ["front", "top", "iso"]


def test_attach_rejects_unknown_view(store, cube_reply, make_client):
    ds = DesignSession(make_client(cube_reply), store)
    ds.start_session("a 20mm cube")
    with pytest.raises(ValueError):
        ds.attach_renders(_renders("front", "perspective"))
    assert ds.latest.renders == []


def test_attach_rejects_empty_list(store, cube_reply, make_client):
    ds = DesignSession(make_client(cube_reply), store)
    ds.start_session("a 20mm cube")
    with pytest.raises(ValueError):
        ds.attach_renders([])


def test_attach_after_explicit_load(store, cube_reply, make_client):
    DesignSession(make_client(cube_reply), store).start_session("a 20mm cube")
    ds = DesignSession(make_client(), store)
    ds.load()
    ds.attach_renders(_renders("front", "top", "iso"))
    assert len(store.load().latest.renders) == 3
