import io
import os
import tempfile

import pytest
from PIL import Image


@pytest.fixture()
def png_bytes() -> bytes:
    """
    small PNG image so tests exercise the JPEG re-encoding path.
    """
    output = io.BytesIO()
    Image.new("RGB", (8, 8), "red").save(output, format="PNG")
    return output.getvalue()


@pytest.fixture()
def db_path():
    """
    path to a fresh SQLite file inside a temporary directory.
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield os.path.join(temp_dir, "test.db")
