"""Run orchestration: stage execution, the pipeline runner and run events.

Import concrete classes from their modules, e.g.
``from stagerun.kernel.orchestration.runner import PipelineRunner``.
"""
