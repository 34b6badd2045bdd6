"""
Tests for adventure file ingestion, validation and export.
"""

import asyncio
import gzip
import json

import pytest

from adventure_engine.config import settings
from adventure_engine.engine.errors import (
    AdventureParseError,
    ConcurrentLoadError,
    CycleDetectedError,
    ReadTimeoutError,
    SizeLimitExceededError,
    StructuralValidationError,
)
from adventure_engine.engine.file_handler import AdventureFileHandler
from adventure_engine.schemas import Adventure
from adventure_engine.utils.streaming import AdventureFile


def make_scene(scene_id, *targets, content=None):
    return {
        "id": scene_id,
        "title": scene_id.title(),
        "content": content or f"You are in {scene_id}.",
        "choices": [
            {"id": f"to_{target}", "text": f"Go to {target}", "targetSceneId": target}
            for target in targets
        ],
    }


def make_document(*scenes, start="a"):
    return {"id": "quest", "title": "Quest", "startSceneId": start, "scenes": list(scenes)}


def as_file(document, name="quest.json", last_modified=1.0):
    return AdventureFile.from_bytes(name, json.dumps(document).encode("utf-8"), last_modified)


class MemoryWriter:
    """Collects written files in memory"""

    def __init__(self):
        self.files = {}

    async def __call__(self, filename, data):
        self.files[filename] = data


class TestValidation:
    """Test structural validation"""

    @pytest.fixture
    def handler(self):
        return AdventureFileHandler()

    def test_cycle_reported_with_path(self, handler):
        document = make_document(make_scene("A", "B"), make_scene("B", "C"), make_scene("C", "A"), start="A")
        report = handler.validate_adventure_structure(document)

        assert not report.is_valid
        assert report.cycle_errors == ["Circular reference detected: A -> B -> C -> A"]
        assert report.cycle_errors[0] in report.errors
        assert report.blocking_errors() == []

    def test_no_cycle(self, handler):
        document = make_document(make_scene("A", "B"), make_scene("B", "C"), make_scene("C"), start="A")
        report = handler.validate_adventure_structure(document)

        assert report.is_valid
        assert report.cycle_errors == []
        assert report.warnings == []

    def test_diamond_is_not_a_cycle(self, handler):
        document = make_document(
            make_scene("A", "B", "C"), make_scene("B", "D"), make_scene("C", "D"), make_scene("D"), start="A"
        )
        assert handler.validate_adventure_structure(document).is_valid

    def test_cycle_path_from_start(self, handler):
        document = make_document(make_scene("A", "B"), make_scene("B", "C"), make_scene("C", "B"), start="A")
        report = handler.validate_adventure_structure(document)
        assert report.cycle_errors == ["Circular reference detected: A -> B -> C -> B"]

    def test_detect_circular_references_raises(self, handler):
        document = make_document(make_scene("A", "A"), start="A")
        with pytest.raises(CycleDetectedError) as exc_info:
            handler.detect_circular_references(document)
        assert exc_info.value.path == ["A", "A"]

    def test_missing_fields(self, handler):
        document = {
            "scenes": [
                {"id": "a", "choices": [{"targetSceneId": "a"}]},
                {"title": "No id", "content": "x"},
            ]
        }
        errors = handler.validate_adventure_structure(document).errors

        assert "Missing adventure ID" in errors
        assert "Missing adventure title" in errors
        assert "Scene 0 (a) missing title" in errors
        assert "Scene 0 (a) missing content" in errors
        assert "Scene 0 choice 0 missing ID" in errors
        assert "Scene 0 choice 0 missing text" in errors
        assert "Scene 1 missing ID" in errors

    def test_not_an_object(self, handler):
        report = handler.validate_adventure_structure(["nope"])
        assert report.errors == ["Adventure must be an object"]

    def test_missing_scenes(self, handler):
        errors = handler.validate_adventure_structure({"id": "q", "title": "Q"}).errors
        assert "Missing or invalid scenes array" in errors

    def test_unknown_start_scene(self, handler):
        report = handler.validate_adventure_structure(make_document(make_scene("a"), start="zzz"))
        assert "Start scene zzz not found" in report.errors

    def test_unknown_tags(self, handler):
        scene = make_scene("a")
        scene["onEnter"] = [{"type": "teleport", "key": "x"}]
        scene["choices"] = [
            {"id": "c", "text": "C", "conditions": [{"type": "weather", "key": "rain"}]},
            {"id": "d", "text": "D", "requirements": [{"type": "stat", "key": "hp", "operator": "~"}]},
        ]
        errors = handler.validate_adventure_structure(make_document(scene)).errors

        assert "Scene 0 onEnter has unknown action type: teleport" in errors
        assert "Scene 0 choice 0 conditions has unknown condition type: weather" in errors
        assert "Scene 0 choice 1 requirements has unknown operator: ~" in errors

    def test_warnings(self, handler):
        document = make_document(make_scene("a", "ghost"), make_scene("island"))
        report = handler.validate_adventure_structure(document)

        assert report.is_valid
        assert "Scene a targets unknown scene ghost" in report.warnings
        assert "Scene island is unreachable from the start scene" in report.warnings

    def test_accepts_adventure_model(self, handler):
        adventure = Adventure(**make_document(make_scene("a", "b"), make_scene("b")))
        assert handler.validate_adventure_structure(adventure).is_valid


class TestLoadAdventureFile:
    """Test single file loads"""

    @pytest.mark.asyncio
    async def test_small_file(self):
        handler = AdventureFileHandler()
        progress = []
        adventure = await handler.load_adventure_file(
            as_file(make_document(make_scene("a", "b"), make_scene("b"))),
            on_progress=progress.append,
        )

        assert isinstance(adventure, Adventure)
        assert [scene.id for scene in adventure.scenes] == ["a", "b"]
        assert [p["progress"] for p in progress] == [50, 100]
        assert handler.get_cache_stats()["cached_files"] == 1
        assert handler.get_cache_stats()["loading_files"] == 0

    @pytest.mark.asyncio
    async def test_streamed_file_progress(self):
        handler = AdventureFileHandler(chunk_size=1024)
        document = make_document(make_scene("a", content="x" * (settings.streaming_threshold_bytes + 10)))
        progress = []

        await handler.load_adventure_file(as_file(document), on_progress=progress.append)

        reading = [p["progress"] for p in progress if p["stage"] == "reading"]
        assert reading == sorted(reading)
        assert 0 <= reading[0] and reading[-1] == 50
        assert progress[-2] == {"stage": "parsing", "progress": 75}
        assert progress[-1] == {"stage": "complete", "progress": 100}

    @pytest.mark.asyncio
    async def test_file_from_disk(self, tmp_path):
        path = tmp_path / "quest.json"
        path.write_text(json.dumps(make_document(make_scene("a"))))
        adventure = await AdventureFileHandler().load_adventure_file(AdventureFile.from_path(path))
        assert adventure.id == "quest"

    @pytest.mark.asyncio
    async def test_size_limit(self):
        handler = AdventureFileHandler(max_file_size=10)
        with pytest.raises(SizeLimitExceededError):
            await handler.load_adventure_file(as_file(make_document(make_scene("a"))))
        assert handler.loading_state == {}

    @pytest.mark.asyncio
    async def test_parse_error(self):
        file = AdventureFile.from_bytes("broken.json", b"{not json", 1.0)
        with pytest.raises(AdventureParseError, match="JSON parsing failed"):
            await AdventureFileHandler().load_adventure_file(file)

    @pytest.mark.asyncio
    async def test_concurrent_load_rejected(self):
        release = asyncio.Event()

        async def slow_reader(file, processor, chunk_size, timeout):
            await release.wait()
            await processor(file.data, {"offset": 0, "size": file.size, "is_last_chunk": True})
            return file.size

        handler = AdventureFileHandler(reader=slow_reader)
        document = make_document(make_scene("a", content="x" * (settings.streaming_threshold_bytes + 1)))
        file = as_file(document)

        first = asyncio.ensure_future(handler.load_adventure_file(file))
        await asyncio.sleep(0)
        with pytest.raises(ConcurrentLoadError, match="File is already being loaded"):
            await handler.load_adventure_file(file)

        release.set()
        assert (await first).id == "quest"

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        async def stuck_reader(file, processor, chunk_size, timeout):
            raise asyncio.TimeoutError()

        handler = AdventureFileHandler(reader=stuck_reader)
        document = make_document(make_scene("a", content="x" * (settings.streaming_threshold_bytes + 1)))
        with pytest.raises(ReadTimeoutError):
            await handler.load_adventure_file(as_file(document))

    @pytest.mark.asyncio
    async def test_truncation(self):
        scenes = [make_scene(f"s{i}") for i in range(5)]
        adventure = await AdventureFileHandler().load_adventure_file(
            as_file(make_document(*scenes, start="s0")), max_scenes=3, validate_structure=False
        )
        assert len(adventure.scenes) == 3
        assert adventure.metadata["truncated"] is True
        assert adventure.metadata["originalSceneCount"] == 5

    @pytest.mark.asyncio
    async def test_structural_errors_block(self):
        document = make_document({"id": "a", "title": "", "content": ""})
        errors_seen = []
        handler = AdventureFileHandler()

        with pytest.raises(StructuralValidationError) as exc_info:
            await handler.load_adventure_file(as_file(document), on_validation_error=errors_seen.extend)

        assert "Scene 0 (a) missing title" in exc_info.value.errors
        assert errors_seen == exc_info.value.errors

    @pytest.mark.asyncio
    async def test_allow_invalid(self):
        document = make_document({"id": "a", "title": "", "content": ""})
        adventure = await AdventureFileHandler().load_adventure_file(as_file(document), allow_invalid=True)
        assert adventure.scenes[0].id == "a"

    @pytest.mark.asyncio
    async def test_cycles_only_block_when_strict(self):
        document = make_document(make_scene("a", "b"), make_scene("b", "a"))
        handler = AdventureFileHandler()
        seen = []

        adventure = await handler.load_adventure_file(as_file(document), on_validation_error=seen.extend)
        assert adventure.id == "quest"
        assert seen == ["Circular reference detected: a -> b -> a"]

        with pytest.raises(StructuralValidationError):
            await handler.load_adventure_file(as_file(document, last_modified=2.0), strict=True)

    @pytest.mark.asyncio
    async def test_type_errors_always_fatal(self):
        document = make_document(make_scene("a"))
        document["scenes"][0]["choices"] = [
            {"id": "c", "text": "C", "conditions": [{"type": "weather", "key": "rain"}]}
        ]
        with pytest.raises(StructuralValidationError, match="Invalid adventure"):
            await AdventureFileHandler().load_adventure_file(as_file(document), allow_invalid=True)

    @pytest.mark.asyncio
    async def test_gzip_file(self):
        data = gzip.compress(json.dumps(make_document(make_scene("a"))).encode("utf-8"))
        file = AdventureFile.from_bytes("quest.json.gz", data, 1.0)
        adventure = await AdventureFileHandler().load_adventure_file(file)
        assert adventure.scenes[0].id == "a"

    @pytest.mark.asyncio
    async def test_optimize_memory(self):
        long_text = "A very long description. " * 100
        document = make_document(make_scene("a", content=long_text), make_scene("b"))
        adventure = await AdventureFileHandler().load_adventure_file(
            as_file(document), optimize_memory=True
        )
        assert adventure.scenes[0].is_content_compressed
        assert adventure.scenes[0].read_content() == long_text
        assert not adventure.scenes[1].is_content_compressed


class TestSaveAdventureFile:
    """Test export"""

    @pytest.mark.asyncio
    async def test_plain_save(self):
        writer = MemoryWriter()
        handler = AdventureFileHandler(writer=writer)
        document = make_document(make_scene("a"))

        summary = await handler.save_adventure_file(document, "quest.json")

        assert summary["filename"] == "quest.json"
        assert not summary["compressed"]
        assert json.loads(writer.files["quest.json"]) == document
        assert writer.files["quest.json"].startswith(b'{\n  "id"')

    @pytest.mark.asyncio
    async def test_invalid_save_rejected(self):
        handler = AdventureFileHandler(writer=MemoryWriter())
        with pytest.raises(StructuralValidationError, match="Cannot save invalid adventure"):
            await handler.save_adventure_file({"scenes": []}, "bad.json")

    @pytest.mark.asyncio
    async def test_chunked_save_round_trip(self):
        writer = MemoryWriter()
        handler = AdventureFileHandler(writer=writer)
        scenes = [make_scene(f"s{i}", f"s{i + 1}") for i in range(119)] + [make_scene("s119")]
        document = make_document(*scenes, start="s0")

        summary = await handler.save_adventure_file(document, "big.json", compress=False)
        saved = json.loads(writer.files["big.json"])

        assert summary["chunked"]
        assert saved["isChunked"] is True
        assert saved["totalScenes"] == 120
        assert len(saved["scenes"]) == 50
        assert [chunk["index"] for chunk in saved["sceneChunks"]] == [1, 2]

        adventure = await handler.load_adventure_file(
            AdventureFile.from_bytes("big.json", writer.files["big.json"], 1.0)
        )
        assert [scene.id for scene in adventure.scenes] == [f"s{i}" for i in range(120)]

    @pytest.mark.asyncio
    async def test_gzip_save_appends_suffix(self, monkeypatch):
        monkeypatch.setattr(settings, "save_compression_threshold_bytes", 100)
        writer = MemoryWriter()
        handler = AdventureFileHandler(writer=writer)
        document = make_document(make_scene("a", content="Long text. " * 100))

        summary = await handler.save_adventure_file(document, "quest.json")

        assert summary["filename"] == "quest.json.gz"
        assert summary["compressed"]
        assert summary["compression_ratio"] > 0
        assert json.loads(gzip.decompress(writer.files["quest.json.gz"])) == document

    @pytest.mark.asyncio
    async def test_save_to_disk(self, tmp_path):
        handler = AdventureFileHandler()
        target = tmp_path / "quest.json"
        await handler.save_adventure_file(Adventure(**make_document(make_scene("a"))), str(target))
        assert json.loads(target.read_text())["id"] == "quest"


class TestBatchLoad:
    """Test loading several files"""

    @pytest.mark.asyncio
    async def test_continue_on_error(self):
        handler = AdventureFileHandler()
        files = [
            as_file(make_document(make_scene("a")), name="one.json"),
            AdventureFile.from_bytes("two.json", b"garbage", 1.0),
            as_file(make_document(make_scene("b"), start="b"), name="three.json"),
        ]
        overall = []

        result = await handler.load_multiple_files(files, on_overall_progress=overall.append)

        assert result.success_count == 2
        assert result.error_count == 1
        assert result.errors[0].file.name == "two.json"
        assert isinstance(result.errors[0].error, AdventureParseError)
        assert overall[-1]["completed"] == 3
        assert overall[-1]["percentage"] == 100

    @pytest.mark.asyncio
    async def test_stop_on_error(self):
        handler = AdventureFileHandler()
        files = [AdventureFile.from_bytes("bad.json", b"garbage", 1.0)]
        with pytest.raises(AdventureParseError):
            await handler.load_multiple_files(files, continue_on_error=False)

    @pytest.mark.asyncio
    async def test_file_progress(self):
        handler = AdventureFileHandler()
        file = as_file(make_document(make_scene("a")))
        updates = []
        await handler.load_multiple_files([file], on_file_progress=lambda f, p: updates.append((f.name, p["progress"])))
        assert updates == [("quest.json", 50), ("quest.json", 100)]


class TestChunking:
    def test_merge_is_inverse_of_chunk(self):
        handler = AdventureFileHandler()
        document = make_document(*[make_scene(f"s{i}") for i in range(7)], start="s0")
        chunked = handler.chunk_scenes_for_save(document, chunk_size=3)
        assert len(chunked["sceneChunks"]) == 2
        assert handler.merge_scene_chunks(chunked) == document
