from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from sparcflow.backends.base import AgentBackend

PHASE_TEMPLATES: dict[str, tuple[str, list[str]]] = {
    "specification": (
        "Requirements Specification",
        [
            "## Functional Requirements",
            "- [ ] Core functionality for: {request}",
            "- [ ] Input validation and error reporting",
            "- [ ] Integration points with existing code",
            "",
            "## Non-Functional Requirements",
            "- [ ] Performance and scalability targets",
            "- [ ] Security and maintainability constraints",
            "",
            "## Acceptance Criteria",
            "- [ ] Behaviour matches the request",
            "- [ ] Tests cover happy path and failures",
        ],
    ),
    "pseudocode": (
        "Pseudocode",
        [
            "```",
            "FUNCTION handle(request):",
            "    VALIDATE request",
            "    result <- PROCESS request",
            "    RETURN result",
            "END FUNCTION",
            "```",
        ],
    ),
    "architecture": (
        "System Architecture",
        [
            "## Components",
            "- Interface layer: accepts requests for {request}",
            "- Service layer: business rules",
            "- Persistence layer: storage adapters",
            "",
            "## Data Flow",
            "Interface -> Service -> Persistence",
        ],
    ),
    "refinement": (
        "Development Guidelines",
        [
            "## Refined Requirements",
            "- Requirements reconciled with the architecture",
            "",
            "## Coding Standards",
            "- Small modules with explicit interfaces",
            "- Errors raised at the boundary they belong to",
        ],
    ),
    "completion": (
        "Design Phase Completion Summary",
        [
            "## Completed Artifacts",
            "{artifacts}",
            "",
            "## Next Steps",
            "1. Build phase: implement the designed solution",
            "2. Testing: implement the test suite",
        ],
    ),
    "implementation": (
        "Implementation Report",
        [
            "## Summary",
            "Implementation outline for: {request}",
            "",
            "## Files",
            "- src/service.py",
            "- src/models.py",
        ],
    ),
    "testing": (
        "Test Suite",
        [
            "## Unit Tests",
            "- service handles valid input",
            "- service rejects invalid input",
            "",
            "## Integration Tests",
            "- end-to-end request flow",
        ],
    ),
    "analysis": (
        "Code Analysis",
        [
            "## Findings",
            "- Missing error handling around external calls",
            "- Input validation gaps",
            "",
            "## Risk",
            "Medium",
        ],
    ),
    "fix_generation": (
        "Generated Fixes",
        [
            "## Fixes",
            "1. Wrap external calls with explicit error handling",
            "2. Validate inputs at the service boundary",
        ],
    ),
}


class TemplateBackend(AgentBackend):
    """Offline backend that renders a fixed markdown outline per phase."""

    name = "template"

    def render(self, context: dict[str, Any]) -> str:
        phase = str(context.get("phase", ""))
        title, body = PHASE_TEMPLATES.get(phase, ("Notes", ["{request}"]))
        request = str(context.get("user_input") or context.get("issue_description") or "")
        artifacts = context.get("artifacts") or []
        artifact_lines = "\n".join(f"- {key}" for key in artifacts) or "- none"
        lines = [f"# {title}", ""]
        issue_title = str(context.get("issue_title") or "").strip()
        if issue_title:
            lines.extend([f"Issue: {issue_title}", ""])
        lines.extend(line.format(request=request, artifacts=artifact_lines) for line in body)
        return "\n".join(lines).strip() + "\n"

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt
        yield self.render(context)
