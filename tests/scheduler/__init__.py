"""
Job scheduler test suite.

- Entities and enum mapping
- Next-run and queue-schedule rules
- Lifecycle state machine and queue effects
- SQLite store
- JobAdmissionService end to end
"""
