from __future__ import annotations

import asyncio
import io
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from .errors import ConversionError, DecodeError, RecodeError, TraceError
from .utils import run_process


def binarize(image_bytes: bytes) -> bytes:
    """Turn a raster icon into a black-on-white silhouette encoded as binary PPM.

    Every pixel with any opacity becomes black, fully transparent pixels become
    white. Images without an alpha channel are treated as fully opaque.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.load()
            alpha = img.convert("RGBA").getchannel("A")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeError(f"not a valid image: {e}") from e

    mask = alpha.point(lambda a: 0 if a > 0 else 255)
    out = io.BytesIO()
    mask.convert("RGB").save(out, format="PPM")
    return out.getvalue()


class Stage(Protocol):
    """One step of the pipeline; turns input bytes into output bytes or raises."""

    stage: str

    async def run(self, data: bytes) -> bytes: ...


class BinarizeStage:
    stage = DecodeError.stage

    async def run(self, data: bytes) -> bytes:
        return await asyncio.to_thread(binarize, data)


class ExternalConverter:
    """A stage backed by an external converter reading stdin and writing stdout."""

    def __init__(
        self,
        argv: Sequence[str],
        error_cls: type[ConversionError],
        timeout_sec: float = 60,
    ):
        self.argv = tuple(argv)
        self.error_cls = error_cls
        self.stage = error_cls.stage
        self.timeout_sec = timeout_sec

    async def run(self, data: bytes) -> bytes:
        res = await run_process(self.argv, input=data, timeout_sec=self.timeout_sec)
        if res.timed_out:
            raise self.error_cls(f"{self.argv[0]} timed out after {self.timeout_sec}s", timed_out=True)
        if not res.ok:
            raise self.error_cls(f"{self.argv[0]}: {res.error_text()}")
        return res.stdout


def potrace(argv: Sequence[str] = ("potrace", "--svg"), timeout_sec: float = 60) -> ExternalConverter:
    return ExternalConverter(argv, TraceError, timeout_sec)


def svg2vd(
    argv: Sequence[str] = ("svg2vd", "-i", "-", "-o", "-"), timeout_sec: float = 60
) -> ExternalConverter:
    return ExternalConverter(argv, RecodeError, timeout_sec)


@dataclass
class StageResult:
    stage: str
    ok: bool
    output: bytes = b""
    error: ConversionError | None = None
    duration_ms: int = 0

    @property
    def timed_out(self) -> bool:
        return bool(self.error and self.error.timed_out)


@dataclass
class ConversionReport:
    stages: list[StageResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.stages) and self.failed is None

    @property
    def failed(self) -> StageResult | None:
        for s in self.stages:
            if not s.ok:
                return s
        return None

    def output_of(self, stage: str) -> bytes | None:
        for s in self.stages:
            if s.stage == stage and s.ok:
                return s.output
        return None

    @property
    def svg(self) -> bytes | None:
        return self.output_of(TraceError.stage)

    @property
    def vector(self) -> bytes | None:
        return self.output_of(RecodeError.stage)

    def raise_for_failure(self) -> None:
        failed = self.failed
        if failed is not None and failed.error is not None:
            raise failed.error


class ConversionPipeline:
    """Binarize, trace and recode an icon; the first failing stage stops the run."""

    def __init__(self, tracer: Stage, recoder: Stage, binarizer: Stage | None = None):
        self.stages: tuple[Stage, ...] = (binarizer or BinarizeStage(), tracer, recoder)

    async def convert(self, image_bytes: bytes, progress=None) -> ConversionReport:
        report = ConversionReport()
        data = image_bytes
        for stage in self.stages:
            if progress is not None:
                await progress(stage.stage)
            started = time.monotonic()
            try:
                data = await stage.run(data)
            except ConversionError as e:
                took = int((time.monotonic() - started) * 1000)
                logging.warning("Conversion stage %s failed after %dms: %s", stage.stage, took, e)
                report.stages.append(StageResult(stage.stage, False, error=e, duration_ms=took))
                break
            took = int((time.monotonic() - started) * 1000)
            logging.info("Conversion stage %s done in %dms (%d bytes)", stage.stage, took, len(data))
            report.stages.append(StageResult(stage.stage, True, output=data, duration_ms=took))
        return report
