import io

import pytest


class RecordingSink(io.BytesIO):
    """BytesIO that keeps its contents readable after close()."""

    def __init__(self):
        super().__init__()
        self.data = b""

    def close(self):
        if not self.closed:
            self.data = self.getvalue()
        super().close()

    def contents(self) -> bytes:
        return self.data if self.closed else self.getvalue()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def root(tmp_path):
    """A served root with an index page, a nested file and a secret outside it."""
    docroot = tmp_path / "www"
    docroot.mkdir()
    (docroot / "index.html").write_bytes(b"<h1>home</h1>")
    (docroot / "docs").mkdir()
    (docroot / "docs" / "page.txt").write_bytes(b"nested page")
    (tmp_path / "secret.txt").write_bytes(b"top secret")
    return docroot
