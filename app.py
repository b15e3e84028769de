import os
import time
import logging
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

import uvicorn
from fastapi import FastAPI, UploadFile, File, Form, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import Settings
from errors import RenderServiceError
from pipeline import RenderPipeline
from providers import (
    AzureImageTransformer,
    AzureSceneAnalyzer,
    ImageTransformProvider,
    SceneAnalysisProvider,
)

APP_VERSION = "1.0.0"


# ===================== LOGGING CONFIGURATION =====================
def setup_logging(log_dir: str = "logs"):
    """
    Configure logging with daily rotating file handler
    Creates log files with format: log_YYYY-MM-DD.txt
    """
    os.makedirs(log_dir, exist_ok=True)

    today = datetime.now().strftime("%Y-%m-%d")
    log_filename = os.path.join(log_dir, f"log_{today}.txt")

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = TimedRotatingFileHandler(
        filename=log_filename,
        when='midnight',  # Rotate at midnight
        interval=1,       # Every 1 day
        backupCount=30,   # Keep 30 days of logs
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Remove existing handlers to avoid duplicates
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    return logging.getLogger(__name__)


logger = logging.getLogger(__name__)


def _request_id(route: str) -> str:
    return f"{route}_{int(time.time() * 1000)}"


# ----------------- FastAPI App Setup -----------------
def create_app(
    settings: Optional[Settings] = None,
    analyzer: Optional[SceneAnalysisProvider] = None,
    transformer: Optional[ImageTransformProvider] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the render service.

    Providers default to the Azure OpenAI implementations; tests pass fakes.
    """
    settings = settings or Settings.from_env()
    if configure_logging:
        setup_logging(settings.log_dir)

    analyzer = analyzer or AzureSceneAnalyzer(settings)
    transformer = transformer or AzureImageTransformer(settings)
    pipeline = RenderPipeline(settings, analyzer, transformer)

    app = FastAPI(
        title="Render to Photo (FastAPI + Azure OpenAI)",
        description="Turns 3D rendered rooms into photorealistic photographs",
        version=APP_VERSION,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    os.makedirs(settings.upload_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

    @app.exception_handler(RenderServiceError)
    async def render_error_handler(request: Request, exc: RenderServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.on_event("startup")
    def startup_event():
        logger.info("=" * 80)
        logger.info("APPLICATION STARTING UP")
        logger.info("=" * 80)
        logger.info(
            f"Azure OpenAI Endpoint: {settings.azure_endpoint if settings.is_configured else 'NOT CONFIGURED'}"
        )
        logger.info(
            f"Deployments - Vision: {settings.vision_deployment}, Image: {settings.image_deployment} "
            f"(mode: {settings.image_api_mode}, api-version: {settings.api_version})"
        )
        logger.info(f"Auto scene analysis: {'on' if settings.auto_analyze else 'off'}")

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("=" * 80)
        logger.info("APPLICATION SHUTTING DOWN")
        logger.info("=" * 80)

    @app.get("/health")
    def health():
        logger.debug("Health check endpoint called")
        return {"status": "ok", "message": "Server is running"}

    @app.post("/api/analyze")
    async def analyze_image(image: Optional[UploadFile] = File(None)):
        """
        List the furniture, fixtures and materials visible in a render.
        """
        request_id = _request_id("analyze")
        logger.info(f"[{request_id}] Analyze request: {image.filename if image else 'no file'}")
        return await pipeline.analyze(image, request_id)

    @app.post("/api/transform")
    async def transform_image(
        request: Request,
        image: Optional[UploadFile] = File(None),
        instructions: Optional[str] = Form(None),
        scene_analysis: Optional[str] = Form(None, alias="sceneAnalysis"),
    ):
        """
        Turn a 3D render into a photorealistic photograph.
        """
        # FastAPI maps an empty form value to the default; a blank
        # sceneAnalysis still means the client answered, so skip analysis.
        form = await request.form()
        sent = form.get("sceneAnalysis")
        if scene_analysis is None and isinstance(sent, str):
            scene_analysis = sent

        request_id = _request_id("transform")
        logger.info(f"[{request_id}] Transform request: {image.filename if image else 'no file'}")
        if instructions:
            logger.info(f"[{request_id}] Instructions length: {len(instructions)} chars")
        return await pipeline.transform(
            image,
            request_id,
            instructions=instructions,
            scene_analysis=scene_analysis,
        )

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
