"""Device/sample matrix campaigns."""

from .bsp import BSPDescription, BSPProjectResolver, ProjectResolver, ResolvedProject, load_bsp
from .job import DeviceParameterSet, TestedSample, TestJob, load_job
from .results import CampaignStatistics, ResultLogger, SampleStatistics, TestOutcome, TestResult
from .runner import CampaignOptions, CampaignRunner, CellState, ValidationFlags

__all__ = [
    "BSPDescription",
    "BSPProjectResolver",
    "CampaignOptions",
    "CampaignRunner",
    "CampaignStatistics",
    "CellState",
    "DeviceParameterSet",
    "ProjectResolver",
    "ResolvedProject",
    "ResultLogger",
    "SampleStatistics",
    "TestJob",
    "TestOutcome",
    "TestResult",
    "TestedSample",
    "ValidationFlags",
    "load_bsp",
    "load_job",
]
