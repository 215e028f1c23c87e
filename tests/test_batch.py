import io
import zipfile

import pytest
from pypdf import PdfReader

from deksmo.base import CancelToken
from deksmo.batch import IDLE, RUNNING, BatchOrchestrator, describe_error
from deksmo.errors import ChapterBusy, ConfigError, EmptyInput, ResolveFailed, WriteFailed
from deksmo.ingest import ingest, sources_from_directory
from deksmo.model import Chapter, ChapterImage, ChapterStore, SourceHandle
from deksmo.progress import ASSEMBLING, COMPLETE, ERROR, STARTING, ProgressBus
from deksmo.resolver import ImageResolver
from deksmo.sink import DirectorySink, MemorySink


@pytest.fixture
def chapter_of(make_image, image_from_bytes):
    def build(name, count=2, size=(20, 30)):
        images = [image_from_bytes(f"{i + 1}.jpg", make_image(*size)) for i in range(count)]
        return Chapter(name=name, images=images, natural_order=True)

    return build


@pytest.fixture
def orchestrator(clock, fake_session):
    def build(**kwargs):
        kwargs.setdefault("sink", MemorySink(clock=clock))
        return BatchOrchestrator(
            ImageResolver(direct_session=fake_session(), max_retries=1),
            clock=clock,
            sleep=clock.sleep,
            **kwargs,
        )

    return build


def _phases(events):
    return [(e.phase, e.chapter_name) for e in events if e.phase != ASSEMBLING]


def test_export_folder_as_pdf(tmp_path, make_image, orchestrator):
    folder = tmp_path / "ChapterA"
    folder.mkdir()
    pages = {}
    for n in ("1", "2", "10", "3"):
        pages[n] = make_image(800, 1200, color=(int(n) * 20, 0, 0))
        (folder / f"{n}.jpg").write_bytes(pages[n])

    (chapter,) = ingest(sources_from_directory(folder))
    runner = orchestrator()
    result = runner.export_one(chapter, "pdf")

    assert result.ok and result.filename == "ChapterA.pdf"
    reader = PdfReader(io.BytesIO(runner.sink.get("ChapterA.pdf")))
    assert len(reader.pages) == 4
    for page, n in zip(reader.pages, ("1", "2", "3", "10")):
        assert round(float(page.mediabox.width)) == 800
        assert round(float(page.mediabox.height)) == 1200
        (xobject,) = [ref.get_object() for ref in page["/Resources"]["/XObject"].values()]
        assert xobject.get_data() == pages[n]


def test_failed_chapter_does_not_stop_batch(chapter_of, orchestrator):
    broken = chapter_of("Two")
    broken.images[0] = ChapterImage(
        name="1.jpg", source=SourceHandle.from_url("https://x.test/missing.jpg")
    )
    chapters = [chapter_of("One"), broken, chapter_of("Three")]
    events = []
    runner = orchestrator()

    result = runner.export_all(chapters, "pdf", progress_sink=events.append)

    assert [r.ok for r in result.results] == [True, False, True]
    assert isinstance(result.results[1].error, ResolveFailed)
    assert result.results[1].reason.startswith("ResolveFailed: ")
    assert [d.filename for d in runner.sink.deliveries] == ["One.pdf", "Three.pdf"]
    assert _phases(events) == [
        (STARTING, "One"),
        (STARTING, "Two"),
        (ERROR, "Two"),
        (STARTING, "Three"),
        (COMPLETE, None),
    ]
    starting = [e for e in events if e.phase == STARTING]
    assert [(e.index, e.total) for e in starting] == [(1, 3), (2, 3), (3, 3)]
    assert not any(c.is_processing for c in chapters)


def test_delay_between_chapters(chapter_of, orchestrator, clock):
    events = []
    runner = orchestrator(delay=0.5)
    runner.export_all([chapter_of(f"Ch {i}") for i in range(3)], "zip", events.append)

    deliveries = runner.sink.deliveries
    starts = [e.timestamp for e in events if e.phase == STARTING]
    assert len(deliveries) == 3
    for delivered, next_start in zip(deliveries, starts[1:]):
        assert next_start - delivered.delivered_at >= 0.5
    assert clock.sleeps == [0.5, 0.5, 0.5]


def test_assembling_progress_events(chapter_of, orchestrator):
    events = []
    orchestrator().export_all([chapter_of("Solo", count=4)], "pdf", events.append)
    percents = [e.percent for e in events if e.phase == ASSEMBLING]
    assert percents == [25, 50, 75, 100]
    assert all(e.chapter_name == "Solo" for e in events if e.phase == ASSEMBLING)


def test_status_goes_idle_after_dismissal(chapter_of, orchestrator, clock):
    runner = orchestrator(dismiss_after=3.0)
    seen = []
    runner.bus.subscribe(lambda e: seen.append(runner.status) if e.phase == STARTING else None)
    assert runner.status == IDLE

    runner.export_all([chapter_of("A")], "pdf")

    assert seen == [RUNNING]
    assert runner.status == COMPLETE
    clock.advance(2.9)
    assert runner.status == COMPLETE
    clock.advance(0.2)
    assert runner.status == IDLE


def test_cancel_stops_remaining_chapters(chapter_of, orchestrator):
    token = CancelToken()
    events = []

    def cancel_on_progress(event):
        events.append(event)
        if event.phase == ASSEMBLING:
            token.cancel()

    chapters = [chapter_of("A", count=3), chapter_of("B")]
    runner = orchestrator(cancel_token=token)
    result = runner.export_all(chapters, "pdf", progress_sink=cancel_on_progress)

    assert result.cancelled
    assert len(result.results) == 1 and not result.results[0].ok
    assert describe_error(result.results[0].error).startswith("Cancelled")
    assert runner.sink.deliveries == []
    assert _phases(events) == [(STARTING, "A"), (ERROR, "A"), (COMPLETE, None)]
    assert not chapters[0].is_processing


def test_chapter_busy_during_export(chapter_of, orchestrator):
    store = ChapterStore()
    store.add_chapters([chapter_of("A")])
    chapter = store.live_chapters()[0]
    attempts = []

    def try_rename(event):
        if event.phase == ASSEMBLING:
            with pytest.raises(ChapterBusy):
                store.rename_chapter(chapter.id, "B")
            attempts.append(chapter.is_processing)

    result = orchestrator().export_one(chapter, "pdf", progress_sink=try_rename)
    assert result.ok
    assert attempts == [True, True]
    assert not chapter.is_processing
    store.rename_chapter(chapter.id, "B")


def test_empty_chapter_reports_error(orchestrator):
    events = []
    runner = orchestrator()
    result = runner.export_all([Chapter(name="Empty")], "pdf", events.append)
    assert isinstance(result.results[0].error, EmptyInput)
    assert runner.sink.deliveries == []
    assert [e.phase for e in events] == [STARTING, ERROR, COMPLETE]
    assert [e.error for e in events if e.phase == ERROR] == ["EmptyInput: No images to export"]


def test_sink_failure_is_per_chapter(chapter_of, orchestrator, clock):
    class FlakySink(MemorySink):
        def deliver(self, data, filename):
            if filename.startswith("Bad"):
                raise WriteFailed("disk full")
            return super().deliver(data, filename)

    runner = orchestrator(sink=FlakySink(clock=clock))
    result = runner.export_all([chapter_of("Bad"), chapter_of("Good")], "zip")
    assert [r.ok for r in result.results] == [False, True]
    assert isinstance(result.results[0].error, WriteFailed)


def test_export_reads_current_image_order(chapter_of, orchestrator):
    chapter = chapter_of("Live", count=3)
    store = ChapterStore()
    store.add_chapters([chapter])
    store.reorder_image(chapter.id, chapter.images[2].id, 0)
    runner = orchestrator()
    runner.export_one(chapter, "zip")

    with zipfile.ZipFile(io.BytesIO(runner.sink.get("Live.zip"))) as zf:
        assert zf.namelist() == ["Live/3.jpg", "Live/1.jpg", "Live/2.jpg"]


def test_unknown_format(chapter_of, orchestrator):
    with pytest.raises(ConfigError):
        orchestrator().export_one(chapter_of("A"), "tiff")


def test_claim_rejects_busy_chapter(chapter_of, orchestrator):
    chapter = chapter_of("A")
    chapter.is_processing = True
    with pytest.raises(ChapterBusy):
        orchestrator().export_one(chapter, "pdf")


def test_bus_is_shared(chapter_of, orchestrator):
    bus = ProgressBus()
    messages = []
    bus.subscribe(lambda e: messages.append(e.to_message()))
    orchestrator(bus=bus).export_all([chapter_of("A", count=1)], "pdf")
    first = messages[0]
    assert first.pop("chapterId")
    assert first == {"phase": STARTING, "chapterName": "A", "i": 1, "N": 1}
    assert messages[1]["percent"] == 100
    assert messages[-1] == {"phase": COMPLETE}


def test_same_named_chapters_both_land_on_disk(chapter_of, orchestrator, tmp_path, capsys):
    runner = orchestrator(sink=DirectorySink(tmp_path))
    result = runner.export_all([chapter_of("Ch 1"), chapter_of("Ch 1")], "pdf")

    assert [r.filename for r in result.delivered] == ["Ch 1.pdf", "Ch 1 (2).pdf"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["Ch 1 (2).pdf", "Ch 1.pdf"]
    stdout = capsys.readouterr().out
    assert "PDF saved → Ch 1.pdf" in stdout
    assert "PDF saved → Ch 1 (2).pdf" in stdout


def test_reports_the_name_actually_written(chapter_of, orchestrator, tmp_path, capsys):
    runner = orchestrator(sink=DirectorySink(tmp_path))
    result = runner.export_one(chapter_of("Ch 1: Start?"), "zip")

    assert result.filename == "Ch 1 Start.zip"
    assert result.location == tmp_path / "Ch 1 Start.zip"
    assert "ZIP saved → Ch 1 Start.zip" in capsys.readouterr().out


def test_assembler_setup_failure_releases_chapter(chapter_of, orchestrator):
    class Unbuildable:
        extension = "pdf"

        def __init__(self, resolver, cancel_token=None):
            raise RuntimeError("no writer available")

    chapters = [chapter_of("A"), chapter_of("B")]
    runner = orchestrator(assembler_for=lambda fmt: Unbuildable)
    result = runner.export_all(chapters, "pdf")

    assert [type(r.error) for r in result.results] == [RuntimeError, RuntimeError]
    assert [r.skipped for r in result.results] == [0, 0]
    assert not any(c.is_processing for c in chapters)
    assert runner.active_chapter is None
