"""
Category-sharded JSONL output

Layout under <output>/:
    products.index.jsonl
    by-category/<slug>.jsonl               (plus rotated <slug>-<stamp>-<n>.jsonl)
    reports/
    metadata.json
"""

import asyncio
import re
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import orjson

from preprocessor.core.config import Settings, get_settings
from preprocessor.core.exceptions import ShardWriteError
from preprocessor.core.logging import log
from preprocessor.schemas.canonical import CanonicalProduct
from preprocessor.schemas.processing import ShardInfo, ShardingStats
from preprocessor.utils.memory import MemoryTracker

INDEX_FILE = "products.index.jsonl"
METADATA_FILE = "metadata.json"
SHARD_DIR = "by-category"
REPORTS_DIR = "reports"

_CLOSE = object()


def rotation_stamp() -> str:
    """UTC timestamp safe for file names: 2024-05-01T10-00-00-123Z"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3] + "Z"


class ShardSink:
    """
    One output file fed through a bounded queue.

    A single consumer task drains the queue and writes in a worker thread,
    so producers suspend on put() while the queue is full.
    """

    def __init__(self, path: Path, category_slug: str, maxsize: int = 256):
        self.path = path
        self.category_slug = category_slug
        self.record_count = 0
        self.size_bytes = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._file = None
        self._consumer: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None
        self._closed = False

    async def open(self) -> "ShardSink":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = await asyncio.to_thread(open, self.path, "wb")
        self._consumer = asyncio.create_task(self._drain())
        return self

    async def put(self, line: bytes):
        if self._closed:
            raise ShardWriteError(f"Sink already closed: {self.path}", path=str(self.path))
        if self._error is not None:
            raise ShardWriteError(f"Write failed for {self.path}: {self._error}", path=str(self.path)) from self._error

        await self._queue.put(line)
        self.record_count += 1
        self.size_bytes += len(line)

    async def _drain(self):
        while True:
            item = await self._queue.get()
            chunk = []
            done = item is _CLOSE
            if not done:
                chunk.append(item)
            # Coalesce whatever is already queued into one write
            while not done and not self._queue.empty():
                item = self._queue.get_nowait()
                if item is _CLOSE:
                    done = True
                else:
                    chunk.append(item)

            if chunk and self._error is None:
                try:
                    await asyncio.to_thread(self._file.write, b"".join(chunk))
                except OSError as e:
                    # Keep draining so producers never block on a dead sink
                    self._error = e
                    log.error(f"Failed writing shard {self.path}: {e}")

            if done:
                return

    async def close(self):
        """Flush everything queued, close the file and surface write errors"""
        if self._closed:
            return
        self._closed = True

        await self._queue.put(_CLOSE)
        if self._consumer is not None:
            await self._consumer
        if self._file is not None:
            await asyncio.to_thread(self._file.close)

        if self._error is not None:
            raise ShardWriteError(f"Write failed for {self.path}: {self._error}", path=str(self.path)) from self._error


class JsonlShardWriter:
    """Streams canonical products into per-category JSONL shards plus a flat index"""

    def __init__(self, shop: str, output_base_path: Path, settings: Optional[Settings] = None):
        self.shop = shop
        self.output_base_path = Path(output_base_path)
        self.settings = settings or get_settings()

        self.shard_dir = self.output_base_path / SHARD_DIR
        self.reports_dir = self.output_base_path / REPORTS_DIR
        self.max_shard_bytes = self.settings.output.shard_size_bytes
        self.queue_size = self.settings.processing.sink_queue_size

        # Active sink per slug; rotated-out sinks are kept for metadata
        self._sinks: Dict[str, ShardSink] = {}
        self._retired: List[ShardSink] = []
        self._rotations: Dict[str, int] = defaultdict(int)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._index_lock = asyncio.Lock()
        self._index: Optional[ShardSink] = None

        self.stats = ShardingStats()
        self.memory = MemoryTracker(
            self.settings.processing.memory_limit_mb,
            self.settings.processing.memory_gc_fraction,
        )
        self._start = time.perf_counter()

    async def initialize(self):
        """Create output directories and open the index"""
        for directory in (self.shard_dir, self.reports_dir):
            directory.mkdir(parents=True, exist_ok=True)

        self._index = await ShardSink(self.output_base_path / INDEX_FILE, "index", self.queue_size).open()
        self._start = time.perf_counter()
        log.debug(f"Shard writer ready for {self.shop} at {self.output_base_path}")

    async def write_product(self, product: CanonicalProduct):
        if self._index is None:
            raise ShardWriteError("Shard writer not initialized", shop=self.shop)

        slug = product.category_slug
        line = orjson.dumps(product.model_dump(mode="json")) + b"\n"

        # One slug's file order must match arrival order, including across rotation
        async with self._locks[slug]:
            sink = self._sinks.get(slug)
            if sink is None:
                sink = await ShardSink(self.shard_path(slug), slug, self.queue_size).open()
                self._sinks[slug] = sink
            elif sink.size_bytes > self.max_shard_bytes:
                sink = await self._rotate(slug, sink)
            await sink.put(line)

        index_line = orjson.dumps(product.to_index_entry().model_dump(mode="json")) + b"\n"
        async with self._index_lock:
            await self._index.put(index_line)

        self._update_stats(product)
        sample = self.memory.sample()
        self.stats.memory_peak = sample.peak_bytes

    async def write_products(self, products: List[CanonicalProduct]) -> List[Optional[Exception]]:
        """
        Issue every write of a batch, then await them all.

        Returns one entry per product, in order: None when written, else the
        error that write raised. Nothing is returned before every write settles.
        """
        results = await asyncio.gather(*(self.write_product(product) for product in products), return_exceptions=True)

        errors: List[Optional[Exception]] = []
        for product, outcome in zip(products, results):
            if isinstance(outcome, Exception):
                log.warning(f"Failed to write {product.canonical_id} to {product.category_slug}: {outcome}")
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                errors.append(None)
        return errors

    async def _rotate(self, slug: str, old: ShardSink) -> ShardSink:
        # Drain the full shard before the replacement becomes visible
        await old.close()
        self._retired.append(old)

        self._rotations[slug] += 1
        number = self._rotations[slug]
        base = self.shard_path(slug)
        path = base.with_name(f"{base.stem}-{rotation_stamp()}-{number}.jsonl")

        sink = await ShardSink(path, slug, self.queue_size).open()
        self._sinks[slug] = sink
        log.info(f"Rotated shard {slug} after {old.size_bytes} bytes -> {path.name}")
        return sink

    def shard_path(self, slug: str) -> Path:
        return self.shard_dir / f"{slug}.jsonl"

    def _update_stats(self, product: CanonicalProduct):
        self.stats.total_products += 1
        key = " > ".join(product.category_path)
        self.stats.category_counts[key] = self.stats.category_counts.get(key, 0) + 1

    def shard_infos(self) -> List[ShardInfo]:
        sinks = self._retired + list(self._sinks.values())
        return [
            ShardInfo(
                category_slug=sink.category_slug,
                file_path=sink.path.relative_to(self.output_base_path).as_posix(),
                record_count=sink.record_count,
                size_bytes=sink.size_bytes,
            )
            for sink in sinks
        ]

    async def finalize(self) -> ShardingStats:
        """Close every sink, write metadata.json and return final stats"""
        sinks = list(self._sinks.values())
        if self._index is not None:
            sinks.append(self._index)

        results = await asyncio.gather(*(sink.close() for sink in sinks), return_exceptions=True)

        shards = self.shard_infos()
        self.stats.total_shards = len(shards)
        self.stats.processing_time = time.perf_counter() - self._start
        self.stats.memory_peak = max(self.stats.memory_peak, self.memory.sample().peak_bytes)

        await asyncio.to_thread(self._write_metadata, shards)

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            raise errors[0]

        log.info(
            f"Finalized {self.shop}: {self.stats.total_products} products in {self.stats.total_shards} shards "
            f"({self.stats.processing_time:.2f}s)"
        )
        return self.stats

    def _write_metadata(self, shards: List[ShardInfo]):
        metadata = {
            "shop": self.shop,
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "stats": self.stats.model_dump(mode="json"),
            "shards": [shard.model_dump(mode="json") for shard in shards],
            "config": {
                "batch_size": self.settings.processing.batch_size,
                "shard_size_mb": self.settings.output.shard_size_mb,
                "memory_limit_mb": self.settings.processing.memory_limit_mb,
            },
        }
        (self.output_base_path / METADATA_FILE).write_bytes(orjson.dumps(metadata, option=orjson.OPT_INDENT_2))


class JsonlShardReader:
    """Reads shards written by JsonlShardWriter"""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.shard_dir = self.base_path / SHARD_DIR

    async def read_category_shard(self, slug: str) -> List[Dict[str, Any]]:
        """Records of the base shard only; empty when missing"""
        return await asyncio.to_thread(self._read_jsonl, self.shard_dir / f"{slug}.jsonl")

    async def read_category(self, slug: str) -> List[Dict[str, Any]]:
        """Base shard followed by its rotated siblings in rotation order"""
        records = []
        for path in self.category_files(slug):
            records.extend(await asyncio.to_thread(self._read_jsonl, path))
        return records

    async def stream_category_shard(self, slug: str) -> AsyncIterator[Dict[str, Any]]:
        path = self.shard_dir / f"{slug}.jsonl"
        if not path.exists():
            return

        handle = await asyncio.to_thread(open, path, "rb")
        try:
            while True:
                line = await asyncio.to_thread(handle.readline)
                if not line:
                    break
                if line.strip():
                    yield orjson.loads(line)
        finally:
            handle.close()

    async def read_index(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._read_jsonl, self.base_path / INDEX_FILE)

    async def read_metadata(self) -> Optional[Dict[str, Any]]:
        path = self.base_path / METADATA_FILE
        if not path.exists():
            return None
        return orjson.loads(await asyncio.to_thread(path.read_bytes))

    def get_available_shards(self) -> List[str]:
        """Slugs (relative paths without extension) of every shard file"""
        if not self.shard_dir.exists():
            return []
        return sorted(
            path.relative_to(self.shard_dir).with_suffix("").as_posix() for path in self.shard_dir.rglob("*.jsonl")
        )

    def category_files(self, slug: str) -> List[Path]:
        base = self.shard_dir / f"{slug}.jsonl"
        pattern = re.compile(
            rf"^{re.escape(base.stem)}-\d{{4}}-\d{{2}}-\d{{2}}T\d{{2}}-\d{{2}}-\d{{2}}-\d{{3}}Z-(\d+)\.jsonl$"
        )

        rotated = []
        if base.parent.exists():
            for path in base.parent.iterdir():
                match = pattern.match(path.name)
                if match:
                    rotated.append((int(match.group(1)), path))

        files = [base] if base.exists() else []
        return files + [path for _, path in sorted(rotated)]

    @staticmethod
    def _read_jsonl(path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        with open(path, "rb") as f:
            return [orjson.loads(line) for line in f if line.strip()]
