from .votes import VotePayload, VoteService, validate_counter_example

__all__ = ["VotePayload", "VoteService", "validate_counter_example"]
