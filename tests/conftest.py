from __future__ import annotations

from pathlib import Path

import pytest

FAKE_SSH = """#!/bin/sh
# Stand-in for ssh: run the last argument locally.
for last; do :; done
exec /bin/sh -c "$last"
"""


@pytest.fixture
def fake_ssh(tmp_path: Path) -> Path:
    script = tmp_path / "fake-ssh"
    script.write_text(FAKE_SSH, encoding="utf-8")
    script.chmod(0o755)
    return script
