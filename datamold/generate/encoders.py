"""Per-format artifact encoders.

Each encoder writes one artifact of roughly ``target_bytes`` to a writable
sink and returns the number of bytes written. Encoders are stateless and
shared by all worker threads; randomness comes from the per-unit ``rng``
passed in, so a seeded unit always yields the same artifact.

Usage:
    encoder = get_encoder("csv")
    with open("artifact_0.csv", "wb") as sink:
        encoder.encode(sink, 1024 * 1024, random.Random(0))
"""

from __future__ import annotations

import io
import logging
import math
import random
import zipfile
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Type, TypeVar
from xml.sax.saxutils import escape

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from PIL import Image

from datamold.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "Encoder",
    "ENCODER_REGISTRY",
    "register_encoder",
    "get_encoder",
    "list_encoders",
]

WORDS = [
    "artisan", "banjo", "beard", "bicycle", "biodiesel", "bitters", "blog",
    "brunch", "butcher", "cardigan", "chambray", "chia", "cliche", "coffee",
    "cold-pressed", "cornhole", "craft", "cred", "denim", "distillery",
    "drinking", "echo", "ethical", "fanny", "farm-to-table", "fixie", "flannel",
    "food", "forage", "gastropub", "gluten-free", "hammock", "hashtag",
    "heirloom", "helvetica", "hoodie", "iphone", "irony", "jean", "kale",
    "keffiyeh", "kickstarter", "kinfolk", "kombucha", "letterpress", "lo-fi",
    "locavore", "lumbersexual", "meggings", "meditation", "messenger", "migas",
    "mixtape", "mlkshk", "moon", "mustache", "narwhal", "normcore", "occupy",
    "organic", "paleo", "pinterest", "pitchfork", "plaid", "polaroid", "poutine",
    "pour-over", "quinoa", "raw", "retro", "roof", "sartorial", "schlitz",
    "selfies", "semiotics", "shoreditch", "single-origin", "skateboard", "slow-carb",
    "small", "squid", "sriracha", "street", "sustainable", "tattooed", "taxidermy",
    "thundercats", "tofu", "tote", "truffaut", "tumblr", "typewriter", "umami",
    "vegan", "vinyl", "viral", "wayfarers", "whatever", "yr", "yuccie",
]

FIRST_NAMES = [
    "Ada", "Alan", "Barbara", "Claude", "Dennis", "Donald", "Edsger", "Frances",
    "Grace", "Guido", "Hedy", "John", "Ken", "Linus", "Margaret", "Niklaus",
    "Radia", "Shafi", "Tim", "Yukihiro",
]
LAST_NAMES = [
    "Allen", "Backus", "Cerf", "Dijkstra", "Goldwasser", "Hamilton", "Hopper",
    "Kay", "Knuth", "Lamarr", "Liskov", "Lovelace", "Matsumoto", "Perlman",
    "Ritchie", "Rossum", "Shannon", "Thompson", "Torvalds", "Wirth",
]
CITIES = [
    "Seoul", "Busan", "Tokyo", "Osaka", "Singapore", "Sydney", "London",
    "Berlin", "Paris", "Madrid", "Toronto", "Chicago", "Austin", "Denver",
    "Lima", "Nairobi",
]
DOMAINS = ["example.com", "example.org", "example.net"]

RECORD_COLUMNS = [
    "id",
    "first_name",
    "last_name",
    "email",
    "city",
    "amount",
    "quantity",
    "active",
    "created_at",
]

_EPOCH = datetime(2023, 1, 1)
_YEAR_SECONDS = 365 * 24 * 60 * 60


class _CountingWriter:
    """Counts bytes on their way to a sink; never closes the sink."""

    def __init__(self, sink: Any) -> None:
        self._sink = sink
        self.count = 0

    def write(self, data: Any) -> int:
        size = memoryview(data).nbytes
        self._sink.write(data)
        self.count += size
        return size

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def tell(self) -> int:
        return self.count

    def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            flush()

    @property
    def closed(self) -> bool:
        return False

    def close(self) -> None:
        # The sink belongs to the caller.
        pass


class Encoder:
    """Base class for artifact encoders."""

    name: str = ""
    extension: str = ""

    def encode(self, sink: Any, target_bytes: int, rng: random.Random) -> int:
        """Write one artifact of roughly ``target_bytes`` to ``sink``.

        A non-positive ``target_bytes`` writes nothing.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


ENCODER_REGISTRY: Dict[str, Encoder] = {}

E = TypeVar("E", bound=Type[Encoder])


def register_encoder(name: str, extension: str = "") -> Callable[[E], E]:
    """Class decorator registering one shared encoder instance under ``name``."""

    def decorator(cls: E) -> E:
        cls.name = name
        cls.extension = extension or name
        ENCODER_REGISTRY[name] = cls()
        return cls

    return decorator


def get_encoder(name: str) -> Encoder:
    encoder = ENCODER_REGISTRY.get(name.lower())
    if encoder is None:
        raise ConfigurationError(
            f"Unknown format '{name}'. Available formats: {', '.join(list_encoders())}.",
            field="format",
            value=name,
        )
    return encoder


def list_encoders() -> List[str]:
    return sorted(ENCODER_REGISTRY.keys())


# ---------------------------------------------------------------------------
# Unstructured text
# ---------------------------------------------------------------------------


def _sentence(rng: random.Random) -> str:
    words = " ".join(rng.choice(WORDS) for _ in range(rng.randint(6, 14)))
    return words[0].upper() + words[1:] + "."


def _paragraph(rng: random.Random, sentences: int = 10) -> str:
    return " ".join(_sentence(rng) for _ in range(sentences))


@register_encoder("txt")
class TextEncoder(Encoder):
    """Paragraphs of filler text, cut to exactly ``target_bytes``."""

    def encode(self, sink: Any, target_bytes: int, rng: random.Random) -> int:
        out = _CountingWriter(sink)
        while out.count < target_bytes:
            data = (_paragraph(rng) + "\n").encode("utf-8")
            remaining = target_bytes - out.count
            if len(data) > remaining:
                data = data[:remaining]
            out.write(data)
        return out.count


# ---------------------------------------------------------------------------
# Structured records
# ---------------------------------------------------------------------------


def records_frame(rng: random.Random, start: int, count: int) -> pd.DataFrame:
    """Build ``count`` synthetic customer records with ids from ``start``."""
    rows = []
    for record_id in range(start, start + count):
        first = rng.choice(FIRST_NAMES)
        last = rng.choice(LAST_NAMES)
        rows.append(
            {
                "id": record_id,
                "first_name": first,
                "last_name": last,
                "email": f"{first}.{last}{record_id}@{rng.choice(DOMAINS)}".lower(),
                "city": rng.choice(CITIES),
                "amount": round(rng.uniform(1, 10000), 2),
                "quantity": rng.randint(1, 100),
                "active": rng.random() < 0.8,
                "created_at": _EPOCH + timedelta(seconds=rng.randint(0, _YEAR_SECONDS)),
            }
        )
    return pd.DataFrame.from_records(rows, columns=RECORD_COLUMNS)


def _with_iso_dates(frame: pd.DataFrame) -> pd.DataFrame:
    frame = frame.copy()
    frame["created_at"] = frame["created_at"].dt.strftime("%Y-%m-%dT%H:%M:%S")
    return frame


class RecordEncoder(Encoder):
    """Writes records in batches sized from the bytes-per-row seen so far.

    Subclasses implement ``begin``, ``write_batch`` and ``end``; ``begin``
    returns per-artifact state since the encoder instance is shared.
    """

    initial_batch = 16
    max_batch = 5000

    def begin(self, out: _CountingWriter) -> Any:
        return None

    def write_batch(
        self, out: _CountingWriter, frame: pd.DataFrame, first: bool, state: Any
    ) -> None:
        raise NotImplementedError

    def end(self, out: _CountingWriter, state: Any) -> None:
        pass

    def encode(self, sink: Any, target_bytes: int, rng: random.Random) -> int:
        if target_bytes <= 0:
            return 0

        out = _CountingWriter(sink)
        state = self.begin(out)
        produced = out.count
        rows = 0
        batch = self.initial_batch

        while produced < target_bytes:
            frame = records_frame(rng, rows, batch)
            before = out.count
            self.write_batch(out, frame, rows == 0, state)
            grew = out.count - before
            if grew <= 0:
                # Writer buffered the batch; estimate from memory footprint.
                grew = int(frame.memory_usage(deep=True).sum())
            produced += grew
            rows += batch

            per_row = max(1.0, grew / batch)
            remaining = target_bytes - produced
            batch = int(min(self.max_batch, max(1, math.ceil(remaining / per_row))))

        self.end(out, state)
        logger.debug("Encoded %d %s records in %d bytes", rows, self.name, out.count)
        return out.count


@register_encoder("csv")
class CSVEncoder(RecordEncoder):
    def write_batch(self, out, frame, first, state):
        text = _with_iso_dates(frame).to_csv(index=False, header=first, lineterminator="\n")
        out.write(text.encode("utf-8"))


@register_encoder("json")
class JSONEncoder(RecordEncoder):
    """JSON lines: one object per record."""

    def write_batch(self, out, frame, first, state):
        text = _with_iso_dates(frame).to_json(orient="records", lines=True)
        out.write((text.rstrip("\n") + "\n").encode("utf-8"))


@register_encoder("xml")
class XMLEncoder(RecordEncoder):
    def begin(self, out):
        out.write(b'<?xml version="1.0" encoding="UTF-8"?>\n<records>\n')

    def write_batch(self, out, frame, first, state):
        lines = []
        for row in _with_iso_dates(frame).itertuples(index=False):
            fields = "".join(
                f"<{column}>{escape(str(value))}</{column}>"
                for column, value in zip(RECORD_COLUMNS, row)
            )
            lines.append(f"  <record>{fields}</record>\n")
        out.write("".join(lines).encode("utf-8"))

    def end(self, out, state):
        out.write(b"</records>\n")


def _sql_literal(value: Any) -> str:
    if isinstance(value, (bool, np.bool_)):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, np.integer, np.floating)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


@register_encoder("sql")
class SQLEncoder(RecordEncoder):
    """A CREATE TABLE statement followed by batched INSERTs."""

    table = "dummy_records"

    def begin(self, out):
        ddl = (
            f"CREATE TABLE IF NOT EXISTS {self.table} (\n"
            "  id BIGINT PRIMARY KEY,\n"
            "  first_name VARCHAR(64),\n"
            "  last_name VARCHAR(64),\n"
            "  email VARCHAR(255),\n"
            "  city VARCHAR(64),\n"
            "  amount DECIMAL(12, 2),\n"
            "  quantity INT,\n"
            "  active BOOLEAN,\n"
            "  created_at TIMESTAMP\n"
            ");\n"
        )
        out.write(ddl.encode("utf-8"))

    def write_batch(self, out, frame, first, state):
        values = ",\n".join(
            "(" + ", ".join(_sql_literal(value) for value in row) + ")"
            for row in _with_iso_dates(frame).itertuples(index=False)
        )
        statement = f"INSERT INTO {self.table} ({', '.join(RECORD_COLUMNS)}) VALUES\n{values};\n"
        out.write(statement.encode("utf-8"))


@register_encoder("parquet")
class ParquetEncoder(RecordEncoder):
    """One parquet row group per batch."""

    def begin(self, out):
        return {"writer": None}

    def write_batch(self, out, frame, first, state):
        table = pa.Table.from_pandas(frame, preserve_index=False)
        if state["writer"] is None:
            state["writer"] = pq.ParquetWriter(out, table.schema, compression="snappy")
        state["writer"].write_table(table)

    def end(self, out, state):
        if state["writer"] is not None:
            state["writer"].close()


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def _numpy_rng(rng: random.Random) -> np.random.Generator:
    return np.random.default_rng(rng.getrandbits(64))


def _write_image(out: _CountingWriter, save: Callable[[io.BytesIO], None]) -> None:
    # Peak memory per worker is the raw pixels plus the encoded copy,
    # about twice target_bytes.
    buffer = io.BytesIO()
    save(buffer)
    out.write(buffer.getbuffer())


@register_encoder("png")
class PNGEncoder(Encoder):
    """RGB noise; noise does not compress, so size tracks pixel count."""

    def encode(self, sink: Any, target_bytes: int, rng: random.Random) -> int:
        if target_bytes <= 0:
            return 0
        side = max(1, math.isqrt(target_bytes // 3))
        pixels = _numpy_rng(rng).integers(0, 256, size=(side, side, 3), dtype=np.uint8)
        image = Image.fromarray(pixels)

        out = _CountingWriter(sink)
        _write_image(out, lambda buffer: image.save(buffer, format="PNG"))
        return out.count


@register_encoder("gif")
class GIFEncoder(Encoder):
    """Animated grayscale noise."""

    frames = 4

    def encode(self, sink: Any, target_bytes: int, rng: random.Random) -> int:
        if target_bytes <= 0:
            return 0
        side = max(1, math.isqrt(target_bytes // self.frames))
        np_rng = _numpy_rng(rng)
        images = [
            Image.fromarray(np_rng.integers(0, 256, size=(side, side), dtype=np.uint8))
            for _ in range(self.frames)
        ]

        out = _CountingWriter(sink)
        _write_image(
            out,
            lambda buffer: images[0].save(
                buffer,
                format="GIF",
                save_all=True,
                append_images=images[1:],
                duration=100,
                loop=0,
            ),
        )
        return out.count


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


@register_encoder("zip")
class ZipEncoder(Encoder):
    """Stored (uncompressed) text members, streamed without seeking."""

    members = 4

    def encode(self, sink: Any, target_bytes: int, rng: random.Random) -> int:
        if target_bytes <= 0:
            return 0
        out = _CountingWriter(sink)
        text = ENCODER_REGISTRY["txt"]
        count = max(1, min(self.members, target_bytes // 1024))
        member_bytes = target_bytes // count

        with zipfile.ZipFile(out, mode="w", compression=zipfile.ZIP_STORED) as archive:
            for index in range(count):
                with archive.open(f"member_{index}.txt", mode="w", force_zip64=True) as member:
                    text.encode(member, member_bytes, rng)
        return out.count
