from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the video pipeline."""


class ValidationError(PipelineError):
    """Request rejected before a job is created."""


class EmptyScriptError(ValidationError):
    def __init__(self, message: str = "script does not contain any scenes") -> None:
        super().__init__(message)


class UnknownTemplateError(ValidationError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"unknown template: {template_id}")
        self.template_id = template_id


class StageError(PipelineError):
    """A pipeline stage could not complete.

    ``stage`` may be unknown where the error is raised (inside a collaborator);
    the executor fills it in before recording the failure.
    """

    kind = "internal"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage


class SynthesisError(StageError):
    kind = "synthesis"


class RenderError(StageError):
    kind = "render"


class PublishError(StageError):
    kind = "storage"


class PipelineTimeoutError(StageError):
    kind = "timeout"


class JobNotFoundError(PipelineError):
    def __init__(self, job_id: object) -> None:
        super().__init__(f"video job not found: {job_id}")
        self.job_id = job_id


class JobConflictError(PipelineError):
    pass


class JobActiveError(PipelineError):
    pass
