"""KubeFleet shared package.

This package contains components shared by the cluster manager service:
- models: Pydantic data models
- database: SQLAlchemy ORM models
- config: Configuration management
- observability: Structured logging
- errors: Error taxonomy
"""

__version__ = "0.1.0"
