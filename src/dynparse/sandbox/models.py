"""Raw process evidence captured by the sandbox for one script run."""

from pydantic import BaseModel, Field


class ProcessOutput(BaseModel):
    """
    Everything observed about a single script process.
    Streams are already decoded; ``exit_code`` is -1 when the process was killed.
    """

    exit_code: int = Field(description="Process exit code (-1 when killed)")
    stdout: str = Field(description="Captured standard output (may be empty)")
    stderr: str = Field(description="Captured standard error (may be empty)")
    timed_out: bool = Field(default=False, description="Killed after the wall-clock limit")
    duration_ms: int = Field(ge=0, description="Wall-clock duration in milliseconds")
