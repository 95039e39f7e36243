"""
Document compilation pipeline for typesetting chunks (LaTeX).

The source is compiled to PDF with the configured engine. The PDF is then
offered to an ordered list of artifact stages; the first stage that
produces an artifact wins, and the reasons given by skipped stages are
reported as warnings.
"""
import base64
import logging
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .attributes import ChunkAttributes, DEFAULT_ZOOM
from .exceptions import CompilationError
from .models import ExecutionResult

logger = logging.getLogger(__name__)

SOURCE_NAME = "input.tex"
PDF_NAME = "input.pdf"
SVG_NAME = "output.svg"

SVG_CONVERTER = "pdf2svg"
SVG_CONVERTER_TIMEOUT_MS = 10000

# Marks stdout that carries a base64 PDF instead of markup
PDF_SENTINEL = "__CHUNK_RUNNER_PDF_BASE64__"

_SVG_ROOT = re.compile(r'<svg\b')


@dataclass
class StageOutcome:
    """Ok(artifact) when artifact is set, otherwise Skip(reason)"""
    artifact: Optional[str] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.artifact is not None

    @classmethod
    def success(cls, artifact: str) -> 'StageOutcome':
        return cls(artifact=artifact)

    @classmethod
    def skip(cls, reason: str) -> 'StageOutcome':
        return cls(reason=reason)


@dataclass
class CompileContext:
    work_dir: Path
    attrs: ChunkAttributes
    cwd: Optional[str]

    @property
    def pdf_path(self) -> Path:
        return self.work_dir / PDF_NAME


def apply_svg_transforms(svg: str, zoom: float, width: str, height: str) -> str:
    """Inject zoom/width/height attributes into the root <svg> element"""
    injected = []
    if zoom != DEFAULT_ZOOM:
        injected.append(f'style="transform: scale({zoom:g});"')
    if width:
        injected.append(f'width="{width}"')
    if height:
        injected.append(f'height="{height}"')
    if not injected:
        return svg
    return _SVG_ROOT.sub('<svg ' + ' '.join(injected), svg, count=1)


class SvgConversionStage:
    """Convert the PDF to SVG with pdf2svg"""
    name = "svg"

    def __init__(self, runner):
        self.runner = runner

    async def produce(self, context: CompileContext) -> StageOutcome:
        svg_path = context.work_dir / SVG_NAME
        result = await self.runner(
            SVG_CONVERTER,
            [str(context.pdf_path), str(svg_path)],
            context.cwd,
            SVG_CONVERTER_TIMEOUT_MS,
        )
        if result.exit_code != 0 or not svg_path.exists():
            return StageOutcome.skip(result.stderr.strip() or f"{SVG_CONVERTER} not found, falling back to PDF embed")

        attrs = context.attrs
        svg = svg_path.read_text(encoding='utf-8', errors='replace')
        return StageOutcome.success(apply_svg_transforms(svg, attrs.zoom, attrs.width, attrs.height))


class RawPdfStage:
    """Embed the compiled PDF itself as base64"""
    name = "pdf"

    async def produce(self, context: CompileContext) -> StageOutcome:
        if not context.pdf_path.exists():
            return StageOutcome.skip("no PDF was produced")
        data = base64.b64encode(context.pdf_path.read_bytes()).decode('ascii')
        return StageOutcome.success(f"{PDF_SENTINEL}{data}")


class CompilationPipeline:
    """Compile a document and turn the result into an embeddable artifact"""

    def __init__(self, runner, stages: Optional[List] = None):
        self.runner = runner
        self.stages = stages if stages is not None else [SvgConversionStage(runner), RawPdfStage()]

    async def run(
        self,
        source: str,
        engine: str,
        attrs: ChunkAttributes,
        cwd: Optional[str],
        timeout_ms: int,
    ) -> ExecutionResult:
        """
        Compile source and return the first artifact a stage produces

        A failing engine run is returned unchanged. Skipped stages are
        reported in stderr of an otherwise successful result.
        """
        work_dir = Path(tempfile.mkdtemp(prefix="chunk_runner_latex_"))
        try:
            source_path = work_dir / SOURCE_NAME
            source_path.write_text(source, encoding='utf-8')

            compiled = await self.runner(
                engine,
                ['-interaction=nonstopmode', f'-output-directory={work_dir}', str(source_path)],
                cwd,
                timeout_ms,
            )
            if compiled.exit_code != 0:
                return compiled

            context = CompileContext(work_dir=work_dir, attrs=attrs, cwd=cwd)
            try:
                artifact, warnings = await self._first_artifact(context)
            except CompilationError as e:
                return ExecutionResult.failure(str(e))

            return ExecutionResult(stdout=artifact, stderr='\n'.join(warnings), exit_code=0)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    async def _first_artifact(self, context: CompileContext):
        warnings = []
        for stage in self.stages:
            outcome = await stage.produce(context)
            if outcome.ok:
                logger.debug(f"Compilation artifact from stage {stage.name}")
                return outcome.artifact, warnings
            logger.info(f"Compilation stage {stage.name} skipped: {outcome.reason}")
            warnings.append(outcome.reason)
        raise CompilationError()
