from sparcflow.backends.base import AgentBackend
from sparcflow.phases.analysis import AnalysisNode
from sparcflow.phases.architecture import ArchitectureNode
from sparcflow.phases.base import PhaseNode
from sparcflow.phases.completion import CompletionNode
from sparcflow.phases.fix_generation import FixGenerationNode
from sparcflow.phases.implementation import ImplementationNode
from sparcflow.phases.pseudocode import PseudocodeNode
from sparcflow.phases.refinement import RefinementNode
from sparcflow.phases.specification import SpecificationNode
from sparcflow.phases.testing import TestingNode

NODE_TYPES: tuple[type[PhaseNode], ...] = (
    SpecificationNode,
    PseudocodeNode,
    ArchitectureNode,
    RefinementNode,
    CompletionNode,
    ImplementationNode,
    TestingNode,
    AnalysisNode,
    FixGenerationNode,
)


def build_phase_nodes(backend: AgentBackend, *, model: str | None = None) -> dict[str, PhaseNode]:
    return {node_type.phase: node_type(backend, model=model) for node_type in NODE_TYPES}


__all__ = [
    "AnalysisNode",
    "ArchitectureNode",
    "CompletionNode",
    "FixGenerationNode",
    "ImplementationNode",
    "NODE_TYPES",
    "PhaseNode",
    "PseudocodeNode",
    "RefinementNode",
    "SpecificationNode",
    "TestingNode",
    "build_phase_nodes",
]
