"""
Shadow Index Maintenance

Keeps shadow index records of a single-table DynamoDB store consistent
with their primary records and the deployed shadow config.

Main components:
- shadows: Shadow config, fingerprinting and shadow record generation
- reconciliation: Drift detection, repair and the segment worker
- coordinator: Maintenance run validation and fan-out
- storage: Table access
- monitoring: Metrics and alert rules
"""

__version__ = "1.0.0"
