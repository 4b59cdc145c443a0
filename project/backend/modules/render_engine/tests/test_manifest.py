"""
Tests for the concat manifest.
"""

import pytest

from shared.errors import ValidationError
from modules.render_engine.manifest import build_concat_manifest


def test_manifest_repeats_last_image():
    manifest = build_concat_manifest([("/tmp/a.png", 2.5), ("/tmp/b.png", 3)])

    assert manifest == (
        "ffconcat version 1.0\n"
        "file '/tmp/a.png'\n"
        "duration 2.500\n"
        "file '/tmp/b.png'\n"
        "duration 3.000\n"
        "file '/tmp/b.png'\n"
    )


def test_empty_manifest_rejected():
    with pytest.raises(ValidationError):
        build_concat_manifest([])


@pytest.mark.parametrize("seconds", [0, -1.5])
def test_non_positive_duration_rejected(seconds):
    with pytest.raises(ValidationError):
        build_concat_manifest([("/tmp/a.png", 1.0), ("/tmp/b.png", seconds)])
