"""The four assembly stages, in run order."""

from iso_assembler.stages.staging import StagingTreeBuilder
from iso_assembler.stages.collect import ArtifactCollector
from iso_assembler.stages.invoke import ImageInvoker, ToolResult
from iso_assembler.stages.report import ResultReporter, describe_failure

__all__ = [
    "ArtifactCollector",
    "ImageInvoker",
    "ResultReporter",
    "StagingTreeBuilder",
    "ToolResult",
    "describe_failure",
]
