from __future__ import annotations

from sparcflow.phases.base import PhaseNode


class SpecificationNode(PhaseNode):
    phase = "specification"
    mode = "design"
    artifact_key = "requirements"
    progress = 20
    agent_id = "design-agent"
    action = "generate_requirements"
    source_artifacts = ()
    instructions = """
You are in DESIGN mode, SPECIFICATION phase.
Extract the concrete requirements from the request and write a requirements
specification: functional and non-functional requirements, constraints and
acceptance criteria.
""".strip()
