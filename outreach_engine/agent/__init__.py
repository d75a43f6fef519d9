"""Proposal generation: LLM providers and the action proposal contract."""
from .proposals import ActionProposal, LLMProposalGenerator, ProposalGenerator

__all__ = ["ActionProposal", "LLMProposalGenerator", "ProposalGenerator"]
