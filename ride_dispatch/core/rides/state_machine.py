# ride_dispatch/core/rides/state_machine.py
from ride_dispatch.common.constants import RideStatus


class RideStateMachine:
    ALLOWED_TRANSITIONS = {
        RideStatus.REQUESTED: [RideStatus.ACCEPTED, RideStatus.CANCELLED],
        RideStatus.ACCEPTED: [RideStatus.STARTED, RideStatus.CANCELLED],
        RideStatus.STARTED: [RideStatus.COMPLETED, RideStatus.CANCELLED],
        RideStatus.COMPLETED: [],
        RideStatus.CANCELLED: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = RideStatus(current_status)
            new = RideStatus(new_status)
            return new in RideStateMachine.ALLOWED_TRANSITIONS.get(curr, [])
        except ValueError:
            return False

    @staticmethod
    def is_terminal(status: str) -> bool:
        try:
            return not RideStateMachine.ALLOWED_TRANSITIONS[RideStatus(status)]
        except ValueError:
            return False
