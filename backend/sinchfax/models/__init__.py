from .fax_job import FaxJob
from .setting import FaxSetting

__all__ = [
    "FaxJob",
    "FaxSetting",
]
