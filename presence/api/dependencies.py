from fastapi import Request
from ..services.pipeline import ClaimPipeline


def get_pipeline(request: Request) -> ClaimPipeline:
    """The pipeline built at startup; override in tests via dependency_overrides."""
    return request.app.state.container.pipeline
