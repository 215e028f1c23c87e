import pytest

from deksmo.errors import WriteFailed
from deksmo.sink import DirectorySink, MemorySink, sanitize_filename


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Ch 1: The Start?.pdf", "Ch 1 The Start.pdf"),
        ('a/b\\c*"<>|.zip', "abc.zip"),
        ("  spaced name.pdf ", "spaced name.pdf"),
        ("???", "untitled"),
        ("...pdf", "untitled.pdf"),
        ("..hidden.zip", "hidden.zip"),
        ("Vol. 1..pdf", "Vol. 1.pdf"),
    ],
)
def test_sanitize_filename(name, expected):
    assert sanitize_filename(name) == expected


def test_directory_sink_writes_file(tmp_path):
    out = tmp_path / "exports"
    path = DirectorySink(out).deliver(b"%PDF-data", "Ch 1: Start.pdf")
    assert path == out / "Ch 1 Start.pdf"
    assert path.read_bytes() == b"%PDF-data"
    assert [p.name for p in out.iterdir()] == ["Ch 1 Start.pdf"]


def test_directory_sink_overwrites_earlier_runs(tmp_path):
    DirectorySink(tmp_path).deliver(b"old", "a.zip")
    DirectorySink(tmp_path).deliver(b"new", "a.zip")
    assert (tmp_path / "a.zip").read_bytes() == b"new"
    assert [p.name for p in tmp_path.iterdir()] == ["a.zip"]


def test_directory_sink_numbers_repeated_names(tmp_path):
    sink = DirectorySink(tmp_path)
    first = sink.deliver(b"one", "Ch 1.pdf")
    second = sink.deliver(b"two", "Ch 1.pdf")
    third = sink.deliver(b"three", "Ch 1?.pdf")
    assert [p.name for p in (first, second, third)] == ["Ch 1.pdf", "Ch 1 (2).pdf", "Ch 1 (3).pdf"]
    assert first.read_bytes() == b"one"
    assert second.read_bytes() == b"two"
    assert third.read_bytes() == b"three"


def test_directory_sink_failure(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_bytes(b"")
    with pytest.raises(WriteFailed):
        DirectorySink(blocker).deliver(b"x", "a.pdf")


def test_memory_sink(clock):
    sink = MemorySink(clock=clock)
    assert sink.deliver(b"abc", "a.pdf") == "a.pdf"
    assert sink.get("a.pdf") == b"abc"
    assert sink.deliveries[0].delivered_at == clock.now
    with pytest.raises(KeyError):
        sink.get("b.pdf")
