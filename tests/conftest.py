"""Shared fixtures: canned model replies, a fake streaming client, a fake openscad."""

import subprocess
import time
from pathlib import Path

import pytest

from cadforge.session import SessionStore

PNG_HEADER = b"\x89PNG\r\n\x1a\n"

CUBE_REPLY = """<openscad>
// 20mm cube
cube([20, 20, 20], center=true);
</openscad>

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
"""

THICK_WALLS_REPLY = """<openscad>
difference() {
    cube([20, 20, 20], center=true);
    cube([14, 14, 21], center=true);
}
</openscad>

changes: walls thickened from 2mm to 3mm

views:
- name: "front"
  angle: [0, 0, 0]
- name: "side"
  angle: [90, 0, 0]
- name: "iso"
  angle: [45, 30, 0]
  distance: 120
"""


class FakeClient:
    """Stands in for AnthropicClient: replays canned replies in small fragments."""

    def __init__(self, *replies, fragment_size=7):
        self.replies = list(replies)
        self.fragment_size = fragment_size
        self.calls = []

    def stream(self, system, content):
        self.calls.append({"system": system, "content": content})
        text = self.replies.pop(0)
        for i in range(0, len(text), self.fragment_size):
            yield text[i:i + self.fragment_size]


class FakeOpenSCAD:
    """Replacement for ``subprocess.Popen`` inside the renderer.

    Writes a fake PNG to the ``-o`` path.  Views listed in ``fail_on`` exit
    with status 1; views in ``hang_on`` never finish until terminated.
    """

    def __init__(self):
        self.calls = []
        self.outputs = []
        self.processes = []
        self.fail_on = set()
        self.hang_on = set()
        self.on_wait = None

    def __call__(self, cmd, stdout=None, stderr=None):
        proc = _FakeProcess(self, cmd, stderr)
        self.processes.append(proc)
        return proc


class _FakeProcess:

    def __init__(self, ctl, cmd, stderr):
        self.ctl = ctl
        self.cmd = cmd
        self.pid = 4242
        self.terminated = False
        self.killed = False
        ctl.calls.append(cmd)

        out = Path(cmd[cmd.index("-o") + 1])
        ctl.outputs.append(out)
        view = out.stem.split("_", 1)[1]
        self.hang = view in ctl.hang_on
        if view in ctl.fail_on:
            stderr.write(b"ERROR: Parser error in file model.scad, line 2")
            self._rc = 1
        else:
            out.write_bytes(PNG_HEADER + view.encode())
            self._rc = 0
        self.returncode = None

    def wait(self, timeout=None):
        if self.hang and self.ctl.on_wait:
            self.ctl.on_wait()
        if self.hang and not (self.terminated or self.killed):
            time.sleep(timeout or 0)
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode = -15 if self.hang else self._rc
        return self.returncode

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.killed = True


@pytest.fixture
def cube_reply():
    return CUBE_REPLY


@pytest.fixture
def thick_walls_reply():
    return THICK_WALLS_REPLY


@pytest.fixture
def make_client():
    return FakeClient


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "state" / "state.json")


@pytest.fixture
def fake_openscad(monkeypatch):
    fake = FakeOpenSCAD()
    monkeypatch.setattr("cadforge.renderer.subprocess.Popen", fake)
    return fake


@pytest.fixture
def render_config():
    return {"render": {"timeout": 5, "poll_interval": 0.01}}
