"""
Bulk ingestion, validation and export of adventure documents.

Large files are read in chunks through an injectable byte-stream reader and
parsed in one pass once fully buffered. Documents are checked structurally
before they are turned into Adventure models:

- missing ids, titles and content are errors that block the load
- circular scene references are errors too, but only block in strict mode
- choices pointing at unknown scenes and unreachable scenes are warnings
"""

import asyncio
import copy
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from adventure_engine.config import settings
from adventure_engine.engine.errors import (
    AdventureParseError,
    ConcurrentLoadError,
    CycleDetectedError,
    ReadTimeoutError,
    SizeLimitExceededError,
    StructuralValidationError,
)
from adventure_engine.schemas import (
    ActionKind,
    Adventure,
    ConditionKind,
    Operator,
    ValidationReport,
    validate_adventure,
)
from adventure_engine.schemas.adventure import OPERATOR_ALIASES
from adventure_engine.utils.compression import GZIP, compress_bytes, decompress_bytes
from adventure_engine.utils.logger import get_logger
from adventure_engine.utils.memory import MemoryMonitor
from adventure_engine.utils.streaming import AdventureFile, stream_file, write_file

logger = get_logger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]
StreamReader = Callable[..., Awaitable[int]]
FileWriter = Callable[[str, bytes], Awaitable[None]]

GZIP_MAGIC = b"\x1f\x8b"

CONDITION_KINDS = {kind.value for kind in ConditionKind}
OPERATORS = {op.value for op in Operator} | set(OPERATOR_ALIASES)
ACTION_KINDS = {kind.value for kind in ActionKind}


@dataclass
class FileLoadOutcome:
    """Result of loading one file in a batch"""

    file: AdventureFile
    adventure: Optional[Adventure] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class BatchLoadResult:
    results: List[FileLoadOutcome] = field(default_factory=list)
    errors: List[FileLoadOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.results if outcome.success)

    @property
    def error_count(self) -> int:
        return len(self.errors)


def _report(callback: Optional[ProgressCallback], stage: str, progress: int) -> None:
    if callback:
        callback({"stage": stage, "progress": progress})


def _choice_targets(scene: Mapping[str, Any]) -> List[str]:
    targets = []
    for choice in scene.get("choices") or []:
        if isinstance(choice, Mapping) and choice.get("targetSceneId"):
            targets.append(choice["targetSceneId"])
    return targets


class AdventureFileHandler:
    """Loads, validates and saves adventure files"""

    def __init__(
        self,
        max_file_size: Optional[int] = None,
        chunk_size: Optional[int] = None,
        validate_on_load: bool = True,
        compression_enabled: bool = True,
        reader: Optional[StreamReader] = None,
        writer: Optional[FileWriter] = None,
        memory: Optional[MemoryMonitor] = None,
    ):
        """
        Initialize the file handler. Unset limits come from settings.

        Args:
            max_file_size: Largest accepted file in bytes
            chunk_size: Bytes per streamed read
            validate_on_load: Default for load_adventure_file(validate_structure)
            compression_enabled: Pack long scene text after large loads
            reader: Chunked byte-stream reader, stream_file compatible
            writer: Async callable persisting (filename, bytes)
            memory: Memory monitor used between reads and batches
        """
        self.max_file_size = max_file_size or settings.max_file_size_bytes
        self.chunk_size = chunk_size or settings.read_chunk_size
        self.validate_on_load = validate_on_load
        self.compression_enabled = compression_enabled
        self.reader = reader or stream_file
        self.writer = writer or write_file
        self.memory = memory or MemoryMonitor(settings.memory_warning_bytes)

        self.loading_state: Dict[str, Dict[str, Any]] = {}
        self.file_cache: Dict[str, Dict[str, Any]] = {}

    def generate_file_id(self, file: AdventureFile) -> str:
        return file.identity

    # Loading

    async def load_adventure_file(
        self,
        file: AdventureFile,
        on_progress: Optional[ProgressCallback] = None,
        on_memory_warning: Optional[Callable[[Dict[str, int]], None]] = None,
        on_validation_error: Optional[Callable[[List[str]], None]] = None,
        validate_structure: Optional[bool] = None,
        use_streaming: bool = True,
        max_scenes: Optional[int] = None,
        allow_invalid: bool = False,
        strict: bool = False,
        optimize_memory: Optional[bool] = None,
    ) -> Adventure:
        """
        Load, validate and parse an adventure file.

        Args:
            file: File to load
            on_progress: Receives {"stage", "progress"} updates
            on_memory_warning: Called when memory pressure is detected while reading
            on_validation_error: Receives structural errors, blocking or not
            validate_structure: Run structural validation (default from constructor)
            use_streaming: Read files above the streaming threshold in chunks
            max_scenes: Truncate documents with more scenes than this
            allow_invalid: Load even when structural errors are found
            strict: Treat circular references as blocking errors
            optimize_memory: Pack long scene content (default: large files only)

        Returns:
            The parsed Adventure

        Raises:
            ConcurrentLoadError: The same file is already loading
            SizeLimitExceededError: File is larger than max_file_size
            ReadTimeoutError: A read did not finish in time
            AdventureParseError: The document is not valid JSON
            StructuralValidationError: The document failed validation
        """
        file_id = self.generate_file_id(file)
        if file_id in self.loading_state:
            raise ConcurrentLoadError("File is already being loaded")

        self.loading_state[file_id] = {"status": "loading", "progress": 0}
        try:
            if file.size > self.max_file_size:
                raise SizeLimitExceededError(
                    f"File too large: {round(file.size / 1024 / 1024)}MB "
                    f"(max: {round(self.max_file_size / 1024 / 1024)}MB)"
                )

            streaming = use_streaming and file.size > settings.streaming_threshold_bytes
            logger.info(
                f"Loading adventure file {file.name} ({file.size} bytes, "
                f"streaming={streaming})"
            )

            if streaming:
                raw = await self._read_streaming(file, on_progress, on_memory_warning)
                _report(on_progress, "parsing", 75)
            else:
                raw = await self._read_direct(file)
                _report(on_progress, "parsing", 50)

            document = await self._parse_document(file, raw)
            document = self._truncate_scenes(
                document, settings.max_scenes if max_scenes is None else max_scenes
            )
            _report(on_progress, "complete", 100)

            should_validate = (
                self.validate_on_load if validate_structure is None else validate_structure
            )
            if should_validate:
                report = self.validate_adventure_structure(document)
                for warning in report.warnings:
                    logger.warning(f"{file.name}: {warning}")
                if report.errors and on_validation_error:
                    on_validation_error(list(report.errors))
                blocking = report.blocking_errors(strict)
                if blocking and not allow_invalid:
                    raise StructuralValidationError(
                        f"Invalid adventure structure: {', '.join(blocking)}", blocking
                    )

            adventure = self._build_adventure(document)

            if optimize_memory is None:
                optimize_memory = (
                    self.compression_enabled
                    and file.size > settings.optimize_memory_threshold_bytes
                )
            if optimize_memory:
                self.optimize_adventure_memory(adventure)

            self.file_cache[file_id] = {
                "adventure": adventure,
                "loaded_at": time.time(),
                "file_size": file.size,
                "compressed": bool(optimize_memory),
            }

            logger.info(
                f"Adventure file loaded: {file.name} "
                f"({len(adventure.scenes)} scenes, {len(adventure.stats)} stats)"
            )
            return adventure
        except Exception as e:
            logger.error(f"Adventure file loading failed for {file.name}: {e}")
            raise
        finally:
            self.loading_state.pop(file_id, None)

    def get_cached_adventure(self, file: AdventureFile) -> Optional[Adventure]:
        cached = self.file_cache.get(self.generate_file_id(file))
        return cached["adventure"] if cached else None

    async def _read_streaming(
        self,
        file: AdventureFile,
        on_progress: Optional[ProgressCallback],
        on_memory_warning: Optional[Callable[[Dict[str, int]], None]],
    ) -> bytes:
        chunks: List[bytes] = []
        file_id = self.generate_file_id(file)

        async def collect(chunk: bytes, meta: Dict[str, Any]) -> None:
            chunks.append(chunk)
            progress = round((meta["offset"] + meta["size"]) / max(file.size, 1) * 50)
            if file_id in self.loading_state:
                self.loading_state[file_id]["progress"] = progress
            _report(on_progress, "reading", progress)
            await self.memory.check_memory_usage(on_memory_warning)

        try:
            await self.reader(
                file,
                collect,
                chunk_size=self.chunk_size,
                timeout=settings.read_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ReadTimeoutError(
                f"Reading {file.name} timed out after {settings.read_timeout_seconds}s"
            )
        return b"".join(chunks)

    async def _read_direct(self, file: AdventureFile) -> bytes:
        try:
            return await file.read_bytes(timeout=settings.read_timeout_seconds)
        except asyncio.TimeoutError:
            raise ReadTimeoutError(
                f"Reading {file.name} timed out after {settings.read_timeout_seconds}s"
            )

    async def _parse_document(self, file: AdventureFile, raw: bytes) -> Dict[str, Any]:
        if file.name.endswith(".gz") or raw[:2] == GZIP_MAGIC:
            try:
                raw = await asyncio.to_thread(decompress_bytes, GZIP, raw)
            except (OSError, EOFError) as e:
                raise AdventureParseError(f"Failed to decompress {file.name}: {e}")

        try:
            document = await asyncio.to_thread(json.loads, raw)
        except ValueError as e:
            raise AdventureParseError(f"JSON parsing failed: {e}")

        if not isinstance(document, dict):
            raise AdventureParseError("JSON parsing failed: document is not an object")

        if document.get("isChunked"):
            document = self.merge_scene_chunks(document)
        return document

    def _truncate_scenes(self, document: Dict[str, Any], max_scenes: int) -> Dict[str, Any]:
        scenes = document.get("scenes")
        if not isinstance(scenes, list) or len(scenes) <= max_scenes:
            return document

        logger.warning(
            f"Adventure has too many scenes, truncating {len(scenes)} to {max_scenes}"
        )
        document["scenes"] = scenes[:max_scenes]
        metadata = document.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        metadata["truncated"] = True
        metadata["originalSceneCount"] = len(scenes)
        document["metadata"] = metadata
        return document

    def _build_adventure(self, document: Dict[str, Any]) -> Adventure:
        try:
            return validate_adventure(document)
        except ValueError as e:
            raise StructuralValidationError(str(e), [str(e)])

    # Validation

    def validate_adventure_structure(
        self, adventure: Union[Adventure, Mapping[str, Any], Any]
    ) -> ValidationReport:
        """
        Check an adventure document for structural problems.

        Args:
            adventure: Adventure model or raw document

        Returns:
            ValidationReport; cycle errors are listed in both errors and
            cycle_errors
        """
        if isinstance(adventure, Adventure):
            adventure = adventure.to_document()
        if not isinstance(adventure, Mapping):
            return ValidationReport(is_valid=False, errors=["Adventure must be an object"])

        errors: List[str] = []
        cycle_errors: List[str] = []
        warnings: List[str] = []

        if not adventure.get("id"):
            errors.append("Missing adventure ID")
        if not adventure.get("title"):
            errors.append("Missing adventure title")

        scenes = adventure.get("scenes")
        if not isinstance(scenes, list):
            errors.append("Missing or invalid scenes array")
            scenes = []

        scene_ids = set()
        for index, scene in enumerate(scenes):
            if not isinstance(scene, Mapping):
                errors.append(f"Scene {index} must be an object")
                continue
            scene_ids.add(scene.get("id"))
            self._validate_scene(index, scene, errors)

        start_scene_id = adventure.get("startSceneId")
        if scenes and not start_scene_id:
            warnings.append("No start scene defined")
        elif start_scene_id and start_scene_id not in scene_ids:
            errors.append(f"Start scene {start_scene_id} not found")

        graph = {
            scene.get("id"): _choice_targets(scene)
            for scene in scenes
            if isinstance(scene, Mapping) and scene.get("id")
        }
        for scene_id, targets in graph.items():
            for target in targets:
                if target not in graph:
                    warnings.append(f"Scene {scene_id} targets unknown scene {target}")

        if start_scene_id in graph:
            path = self.find_cycle(graph, start_scene_id)
            if path:
                message = str(CycleDetectedError(path))
                errors.append(message)
                cycle_errors.append(message)

            reachable = self._reachable(graph, start_scene_id)
            for scene_id in graph:
                if scene_id not in reachable:
                    warnings.append(f"Scene {scene_id} is unreachable from the start scene")

        return ValidationReport(
            is_valid=not errors,
            errors=errors,
            cycle_errors=cycle_errors,
            warnings=warnings,
        )

    def _validate_scene(self, index: int, scene: Mapping[str, Any], errors: List[str]) -> None:
        scene_id = scene.get("id")
        if not scene_id:
            errors.append(f"Scene {index} missing ID")
        if not scene.get("title"):
            errors.append(f"Scene {index} ({scene_id}) missing title")
        if not scene.get("content"):
            errors.append(f"Scene {index} ({scene_id}) missing content")

        for hook in ("onEnter", "onExit"):
            self._validate_actions(f"Scene {index} {hook}", scene.get(hook), errors)

        choices = scene.get("choices") or []
        if not isinstance(choices, list):
            errors.append(f"Scene {index} ({scene_id}) choices must be a list")
            return

        for choice_index, choice in enumerate(choices):
            where = f"Scene {index} choice {choice_index}"
            if not isinstance(choice, Mapping):
                errors.append(f"{where} must be an object")
                continue
            if not choice.get("id"):
                errors.append(f"{where} missing ID")
            if not choice.get("text"):
                errors.append(f"{where} missing text")
            for group in ("conditions", "requirements", "selectableIf"):
                self._validate_conditions(f"{where} {group}", choice.get(group), errors)
            self._validate_actions(f"{where} actions", choice.get("actions"), errors)

    def _validate_conditions(self, where: str, conditions: Any, errors: List[str]) -> None:
        for condition in conditions or []:
            if not isinstance(condition, Mapping):
                errors.append(f"{where} has a malformed condition")
                continue
            if condition.get("type") not in CONDITION_KINDS:
                errors.append(f"{where} has unknown condition type: {condition.get('type')}")
            operator = condition.get("operator")
            if operator is not None and operator not in OPERATORS:
                errors.append(f"{where} has unknown operator: {operator}")

    def _validate_actions(self, where: str, actions: Any, errors: List[str]) -> None:
        for action in actions or []:
            if not isinstance(action, Mapping):
                errors.append(f"{where} has a malformed action")
            elif action.get("type") not in ACTION_KINDS:
                errors.append(f"{where} has unknown action type: {action.get('type')}")

    def find_cycle(self, graph: Mapping[str, Sequence[str]], start: str) -> Optional[List[str]]:
        """
        Depth-first search for a scene that reappears on the active path.

        Returns:
            The path from start up to and including the repeated scene, or
            None when no cycle is reachable from start
        """
        path = [start]
        on_path = {start}
        explored = set()
        stack = [iter(graph.get(start, []))]

        while stack:
            target = next(stack[-1], None)
            if target is None:
                stack.pop()
                finished = path.pop()
                on_path.discard(finished)
                explored.add(finished)
                continue
            if target in on_path:
                return path + [target]
            if target in explored:
                continue
            path.append(target)
            on_path.add(target)
            stack.append(iter(graph.get(target, [])))

        return None

    def detect_circular_references(self, adventure: Union[Adventure, Mapping[str, Any]]) -> None:
        """
        Raises:
            CycleDetectedError: A cycle is reachable from the start scene
        """
        if isinstance(adventure, Adventure):
            adventure = adventure.to_document()
        graph = {
            scene.get("id"): _choice_targets(scene)
            for scene in adventure.get("scenes") or []
            if isinstance(scene, Mapping) and scene.get("id")
        }
        start = adventure.get("startSceneId")
        if start not in graph:
            return
        path = self.find_cycle(graph, start)
        if path:
            raise CycleDetectedError(path)

    def _reachable(self, graph: Mapping[str, Sequence[str]], start: str) -> set:
        seen = {start}
        pending = [start]
        while pending:
            for target in graph.get(pending.pop(), []):
                if target not in seen:
                    seen.add(target)
                    pending.append(target)
        return seen

    # Memory and export

    def optimize_adventure_memory(self, adventure: Adventure) -> int:
        """Pack long scene content in place; returns the number of scenes packed"""
        packed = 0
        for scene in adventure.scenes:
            if len(scene.content) > settings.scene_content_compression_chars:
                if scene.compress_content():
                    packed += 1
        if packed:
            logger.debug(f"Packed content of {packed} scenes in {adventure.id}")
        return packed

    def chunk_scenes_for_save(
        self, document: Dict[str, Any], chunk_size: Optional[int] = None
    ) -> Dict[str, Any]:
        """Split scenes into an inline first chunk plus indexed sceneChunks"""
        chunk_size = chunk_size or settings.save_chunk_size
        scenes = document.get("scenes") or []
        chunks = [
            {"index": start // chunk_size, "scenes": scenes[start : start + chunk_size]}
            for start in range(0, len(scenes), chunk_size)
        ]
        chunked = dict(document)
        chunked["scenes"] = scenes[:chunk_size]
        chunked["sceneChunks"] = chunks[1:]
        chunked["isChunked"] = True
        chunked["totalScenes"] = len(scenes)
        return chunked

    def merge_scene_chunks(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Inverse of chunk_scenes_for_save"""
        merged = {
            key: value
            for key, value in document.items()
            if key not in ("sceneChunks", "isChunked", "totalScenes")
        }
        scenes = list(document.get("scenes") or [])
        chunks = sorted(document.get("sceneChunks") or [], key=lambda c: c.get("index", 0))
        for chunk in chunks:
            scenes.extend(chunk.get("scenes") or [])
        merged["scenes"] = scenes

        expected = document.get("totalScenes")
        if expected is not None and expected != len(scenes):
            logger.warning(
                f"Chunked document declares {expected} scenes but holds {len(scenes)}"
            )
        return merged

    async def save_adventure_file(
        self,
        adventure: Union[Adventure, Mapping[str, Any]],
        filename: str,
        compress: bool = True,
        validate: bool = True,
        chunk_scenes: bool = True,
        allow_invalid: bool = False,
        strict: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """
        Serialize an adventure and hand it to the writer.

        Large scene lists are chunked and large payloads gzip-compressed,
        in which case ".gz" is appended to the filename.

        Returns:
            Summary with filename, sizes and what was applied
        """
        if isinstance(adventure, Adventure):
            document = adventure.to_document()
        else:
            document = copy.deepcopy(dict(adventure))

        logger.info(
            f"Saving adventure file {filename} "
            f"({len(document.get('scenes') or [])} scenes, compress={compress})"
        )
        try:
            if validate:
                report = self.validate_adventure_structure(document)
                blocking = report.blocking_errors(strict)
                if blocking and not allow_invalid:
                    raise StructuralValidationError(
                        f"Cannot save invalid adventure: {', '.join(blocking)}", blocking
                    )

            chunked = False
            if chunk_scenes and len(document.get("scenes") or []) > settings.save_chunk_threshold:
                document = self.chunk_scenes_for_save(document)
                chunked = True

            data = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
            original_size = len(data)

            compressed = False
            if compress and original_size > settings.save_compression_threshold_bytes:
                _report(on_progress, "compressing", 50)
                codec, packed = await asyncio.to_thread(compress_bytes, data)
                if codec == GZIP:
                    data = packed
                    filename += ".gz"
                    compressed = True

            await self.writer(filename, data)
            _report(on_progress, "complete", 100)
        except Exception as e:
            logger.error(f"Adventure file saving failed for {filename}: {e}")
            raise

        summary = {
            "filename": filename,
            "original_size": original_size,
            "saved_size": len(data),
            "compressed": compressed,
            "chunked": chunked,
            "compression_ratio": (
                round((1 - len(data) / original_size) * 100) if compressed else 0
            ),
        }
        logger.info(f"Adventure file saved: {summary}")
        return summary

    # Batches

    async def load_multiple_files(
        self,
        files: Sequence[AdventureFile],
        concurrency: Optional[int] = None,
        on_file_progress: Optional[Callable[[AdventureFile, Dict[str, Any]], None]] = None,
        on_overall_progress: Optional[ProgressCallback] = None,
        continue_on_error: bool = True,
        on_memory_warning: Optional[Callable[[Dict[str, int]], None]] = None,
        **load_options: Any,
    ) -> BatchLoadResult:
        """
        Load files in fixed-size windows.

        Memory is checked between windows. Failures are collected, or the
        first one is raised when continue_on_error is False.
        """
        concurrency = max(1, concurrency or settings.batch_concurrency)
        batch = BatchLoadResult()
        completed = 0
        total = len(files)

        async def load_one(file: AdventureFile) -> FileLoadOutcome:
            nonlocal completed
            progress = None
            if on_file_progress:
                progress = lambda update: on_file_progress(file, update)  # noqa: E731
            try:
                adventure = await self.load_adventure_file(
                    file, on_progress=progress, **load_options
                )
                outcome = FileLoadOutcome(file=file, adventure=adventure)
            except Exception as e:
                outcome = FileLoadOutcome(file=file, error=e)
                batch.errors.append(outcome)

            completed += 1
            update = {
                "completed": completed,
                "total": total,
                "percentage": round(completed / total * 100),
            }
            if not outcome.success:
                update["errors"] = len(batch.errors)
            if on_overall_progress:
                on_overall_progress(update)

            if not outcome.success and not continue_on_error:
                raise outcome.error
            return outcome

        for start in range(0, total, concurrency):
            window = files[start : start + concurrency]
            batch.results.extend(await asyncio.gather(*(load_one(f) for f in window)))

            if start + concurrency < total:
                await self.memory.yield_control()
                await self.memory.check_memory_usage(on_memory_warning)

        logger.info(
            f"Batch load finished: {batch.success_count} loaded, "
            f"{batch.error_count} failed"
        )
        return batch

    # Cache

    def clear_cache(self) -> None:
        self.file_cache.clear()
        self.loading_state.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "cached_files": len(self.file_cache),
            "loading_files": len(self.loading_state),
            "total_memory_usage": sum(c["file_size"] for c in self.file_cache.values()),
        }
