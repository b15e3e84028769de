"""
Per-request orchestration: intake -> (analysis) -> transform -> cleanup.

Each request walks its own PipelineRun through
Received -> Validated -> [Analyzing] -> Transforming -> Responding -> Cleaned,
or into Failed from any non-terminal state. The stored upload is deleted
exactly once on the way into a terminal state.
"""

import logging
import time
import traceback
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from config import Settings
from errors import AnalysisError, ExternalAPIError, RenderServiceError
from prompts import build_transformation_prompt
from providers import ImageTransformProvider, SceneAnalysisProvider
from uploads import UploadedFile, remove_upload, save_upload

logger = logging.getLogger(__name__)

ANALYSIS_FALLBACK = "Unable to identify objects in the scene."


class PipelineState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    ANALYZING = "analyzing"
    TRANSFORMING = "transforming"
    RESPONDING = "responding"
    CLEANED = "cleaned"
    FAILED = "failed"


TERMINAL_STATES = {PipelineState.CLEANED, PipelineState.FAILED}


class PipelineRun:
    """State and the stored upload for one request."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.state = PipelineState.RECEIVED
        self.uploaded: Optional[UploadedFile] = None
        self.cleaned_up = False
        self.started = time.time()

    def advance(self, state: PipelineState):
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"[{self.request_id}] run already finished in state {self.state.value}")
        logger.debug(f"[{self.request_id}] {self.state.value} -> {state.value}")
        self.state = state

    def cleanup(self):
        if self.cleaned_up:
            return
        self.cleaned_up = True
        remove_upload(self.uploaded)

    def finish(self, failed: bool):
        self.cleanup()
        if self.state not in TERMINAL_STATES:
            self.advance(PipelineState.FAILED if failed else PipelineState.CLEANED)
        elapsed = time.time() - self.started
        logger.info(f"[{self.request_id}] Finished in state {self.state.value} after {elapsed:.2f}s")


class RenderPipeline:
    def __init__(
        self,
        settings: Settings,
        analyzer: SceneAnalysisProvider,
        transformer: ImageTransformProvider,
    ):
        self.settings = settings
        self.analyzer = analyzer
        self.transformer = transformer

    async def _intake(self, run: PipelineRun, upload: Optional[UploadFile]):
        run.uploaded = await save_upload(upload, self.settings.upload_dir, self.settings.max_upload_bytes)
        run.advance(PipelineState.VALIDATED)
        logger.info(f"[{run.request_id}] Processing image: {run.uploaded.filename}")

    async def _analyze(self, run: PipelineRun, strict: bool = False) -> Optional[str]:
        run.advance(PipelineState.ANALYZING)
        uploaded = run.uploaded
        call = self.analyzer.describe if strict else self.analyzer.analyze
        return await run_in_threadpool(call, uploaded.path, uploaded.mime_type)

    async def analyze(self, upload: Optional[UploadFile], request_id: str) -> Dict[str, Any]:
        """Run the vision analysis on its own and report the text back."""
        run = PipelineRun(request_id)
        failed = True
        try:
            await self._intake(run, upload)
            analysis = await self._analyze(run, strict=True)
            run.advance(PipelineState.RESPONDING)
            failed = False
            return {"success": True, "analysis": analysis, "filename": run.uploaded.filename}
        except AnalysisError as e:
            logger.error(f"[{request_id}] Error analyzing image: {e.details}")
            e.extra.setdefault("analysis", ANALYSIS_FALLBACK)
            raise
        except RenderServiceError:
            raise
        except Exception as e:
            logger.error(f"[{request_id}] Error analyzing image: {e}")
            logger.error(traceback.format_exc())
            raise AnalysisError(str(e), extra={"analysis": ANALYSIS_FALLBACK})
        finally:
            run.finish(failed)

    async def transform(
        self,
        upload: Optional[UploadFile],
        request_id: str,
        instructions: Optional[str] = None,
        scene_analysis: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Turn an uploaded render into a photorealistic image.

        scene_analysis=None means the client sent none; the analyzer then
        runs only when auto analysis is on and the legacy single-call mode
        is off. Analysis failure just drops the scene section from the prompt.
        """
        run = PipelineRun(request_id)
        failed = True
        try:
            await self._intake(run, upload)

            if scene_analysis is None and self.settings.auto_analyze and not self.settings.legacy_mode:
                scene_analysis = await self._analyze(run)
                if scene_analysis is None:
                    logger.warning(f"[{request_id}] Continuing without scene analysis")

            prompt = build_transformation_prompt(scene_analysis, instructions)
            run.advance(PipelineState.TRANSFORMING)
            logger.info(f"[{request_id}] Calling image service (prompt {len(prompt)} chars)")
            uploaded = run.uploaded
            generated = await run_in_threadpool(
                self.transformer.transform, uploaded.path, prompt, uploaded.mime_type
            )

            run.advance(PipelineState.RESPONDING)
            logger.info(f"[{request_id}] Image generated successfully ({generated.source})")
            failed = False
            return {
                "success": True,
                "imageUrl": generated.image_url,
                "revisedPrompt": generated.revised_prompt,
            }
        except RenderServiceError as e:
            logger.error(f"[{request_id}] Error transforming image: {e.details}")
            raise
        except Exception as e:
            logger.error(f"[{request_id}] Error transforming image: {e}")
            logger.error(traceback.format_exc())
            raise ExternalAPIError(str(e))
        finally:
            run.finish(failed)
