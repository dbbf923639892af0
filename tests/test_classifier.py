"""Tests for media classification."""

from pathlib import Path

import pytest

from discovery.classifier import MediaClassifier, MediaType


@pytest.fixture
def classifier():
    return MediaClassifier()


@pytest.mark.parametrize(
    "name, expected",
    [
        ("photo.jpg", MediaType.IMAGE),
        ("PHOTO.JPEG", MediaType.IMAGE),
        ("anim.gif", MediaType.IMAGE),
        ("shot.WebP", MediaType.IMAGE),
        ("clip.mp4", MediaType.VIDEO),
        ("clip.MOV", MediaType.VIDEO),
        ("notes.txt", None),
        ("archive.cbz", None),
        ("noextension", None),
    ],
)
def test_classify_by_extension(classifier, name, expected):
    assert classifier.classify(name) == expected


def test_hidden_files_never_classify(classifier):
    assert classifier.classify(".secret.jpg") is None
    assert classifier.classify("._photo.jpg") is None
    assert classifier.classify("Thumbs.db") is None


def test_classify_accepts_paths(classifier):
    assert classifier.classify("/media/A/b/1.png") == MediaType.IMAGE


def test_is_hidden_path_checks_every_component(classifier):
    root = Path("/media")
    assert classifier.is_hidden_path(Path("/media/.cache/1.jpg"), root)
    assert classifier.is_hidden_path(Path("/media/A/@eaDir/1.jpg"), root)
    assert not classifier.is_hidden_path(Path("/media/A/b/1.jpg"), root)
    # Components above the root do not count
    assert not classifier.is_hidden_path(Path("/home/.user/media/A/1.jpg"), Path("/home/.user/media"))


def test_custom_extensions():
    classifier = MediaClassifier(image_extensions=[".HEIC"], video_extensions=[".mkv"])
    assert classifier.classify("a.heic") == MediaType.IMAGE
    assert classifier.classify("a.mkv") == MediaType.VIDEO
    assert classifier.classify("a.jpg") is None
