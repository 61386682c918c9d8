"""Static air-quality reference data.

Reference data that doesn't change with API calls: provider catalog and
authority tiers, pollutant thresholds, time steps and refresh cadence.

Adding a new module:
1. Create ``reference/{name}.py`` with constants/dataclasses
2. Re-export from this ``__init__.py``
"""

from air_quality_map.reference.pollutants import DEFAULT_POLLUTANT as DEFAULT_POLLUTANT
from air_quality_map.reference.pollutants import POLLUTANTS as POLLUTANTS
from air_quality_map.reference.sources import REPORT_SOURCE as REPORT_SOURCE
from air_quality_map.reference.sources import SOURCE_GROUPS as SOURCE_GROUPS
from air_quality_map.reference.sources import SOURCE_PRIORITY as SOURCE_PRIORITY
from air_quality_map.reference.sources import SOURCES as SOURCES
from air_quality_map.reference.sources import canonical_source as canonical_source
from air_quality_map.reference.sources import canonical_sources as canonical_sources
from air_quality_map.reference.time_steps import DEFAULT_TIME_STEP as DEFAULT_TIME_STEP
from air_quality_map.reference.time_steps import refresh_period as refresh_period
