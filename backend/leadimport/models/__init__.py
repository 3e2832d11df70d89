from leadimport.models.lead import Lead
from leadimport.models.import_job import ImportJob

__all__ = [
    "Lead",
    "ImportJob",
]
