"""bspvalidator - compile-matrix regression testing for generated BSPs."""

__version__ = "0.3.0"

from bspvalidator.campaign.job import TestJob, load_job
from bspvalidator.campaign.runner import CampaignOptions, CampaignRunner
from bspvalidator.campaign.results import CampaignStatistics, TestOutcome, TestResult
from bspvalidator.errors import BSPValidatorError, ConfigurationError, WorkspaceError

__all__ = [
    "BSPValidatorError",
    "CampaignOptions",
    "CampaignRunner",
    "CampaignStatistics",
    "ConfigurationError",
    "TestJob",
    "TestOutcome",
    "TestResult",
    "WorkspaceError",
    "load_job",
]
