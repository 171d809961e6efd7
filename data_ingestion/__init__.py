"""PlaneSplit — Data Ingestion Package.

Scene description loading and world-space polygon construction.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
