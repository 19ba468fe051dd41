"""Generation logic package.

Groups the orchestration of a single generation request (template selection,
context budgeting, resilient backend calls, quality scoring and history) so that
`docgen/api/routes.py` stays focused on HTTP routing.
"""

from .orchestrator import GenerationOrchestrator  # noqa: F401
from .orchestrator import create_orchestrator  # noqa: F401
