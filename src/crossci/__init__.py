from .dsl import job, sh, matrix, wf, pipeline
from .runner import run_pipeline, plan_pipeline, load_workflow
from .model import Job, Step, Target, Workflow
from .triggers import Event, on, push, pull_request

__all__ = [
    "job", "sh", "matrix", "wf", "pipeline",
    "run_pipeline", "plan_pipeline", "load_workflow",
    "Job", "Step", "Target", "Workflow",
    "Event", "on", "push", "pull_request",
]
