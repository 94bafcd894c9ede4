class RenewalError(Exception):
    """Base class for renewal workflow errors."""


class PolicyNotFoundError(RenewalError):
    def __init__(self, policy_id: str) -> None:
        super().__init__(f"Policy not found: {policy_id}")
        self.policy_id = policy_id


class RenewalValidationError(RenewalError):
    """Raised for malformed input such as unparseable dates or unknown statuses."""
