class AutomationUnavailable(Exception):
    """The run's automation can no longer execute; the run is cancelled."""

    def __init__(self, automation_id: str, message: str) -> None:
        super().__init__(message)
        self.automation_id = automation_id


class AutomationMissing(AutomationUnavailable):
    def __init__(self, automation_id: str) -> None:
        super().__init__(automation_id, f"Automation {automation_id} not found")


class AutomationInactive(AutomationUnavailable):
    def __init__(self, automation_id: str) -> None:
        super().__init__(automation_id, f"Automation {automation_id} is inactive")


class HandlerError(RuntimeError):
    """Raised by an action handler; recorded on the run or cart, never fatal to a tick."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownActionType(HandlerError):
    def __init__(self, action_type: str) -> None:
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class InvalidActionConfig(HandlerError):
    pass


class MissingRecipient(HandlerError):
    pass


class MissingTarget(HandlerError):
    pass


class MissingContent(HandlerError):
    pass


class StoreNotFound(HandlerError):
    pass


class CustomerNotFound(HandlerError):
    pass


class OrderNotFound(HandlerError):
    pass


class TagNotFound(HandlerError):
    pass


class EmailDeliveryFailed(HandlerError):
    pass


class WebhookTransportError(HandlerError):
    pass
