"""PlaneSplit — Core Engine Package.

Planes and convex polygons, the BSP splitter, and painter's-order fragment
sequencing.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
