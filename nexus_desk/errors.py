class NexusDeskError(Exception):
    pass


class TenantIsolationError(NexusDeskError):
    def __init__(self, company_id: str, ticket_id: str):
        self.company_id = company_id
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} is not accessible from company {company_id}")


class TicketNotFoundError(NexusDeskError):
    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} not found")


class ConcurrentModificationError(NexusDeskError):
    def __init__(self, ticket_id: str, expected: int, actual: int):
        self.ticket_id = ticket_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently (expected version {expected}, found {actual})"
        )


class FeatureNotAvailableError(NexusDeskError):
    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"Feature '{feature}' is not available on the current plan")


class ModelInvocationError(NexusDeskError):
    pass


class ModelOutputError(NexusDeskError):
    pass


class UnknownAgentError(NexusDeskError):
    def __init__(self, company_id: str, agent_id: str):
        self.company_id = company_id
        self.agent_id = agent_id
        super().__init__(f"No agent {agent_id} in company {company_id}")


class DuplicateUserError(NexusDeskError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} already exists")
