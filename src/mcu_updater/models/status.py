"""Status enums for the firmware upgrade state machine."""

from enum import Enum


class UpgradeMode(str, Enum):
    """How the device should treat the new images after upload."""

    TEST_AND_CONFIRM = "testAndConfirm"
    TEST_ONLY = "testOnly"
    CONFIRM_ONLY = "confirmOnly"


class UpgradeState(str, Enum):
    """Upgrade lifecycle states.

    State transitions:
    idle → validate → upload → test → confirm → reset → success
                 ↓        ↓       ↓        ↓        ↓
               failed ←────────────────────────────
    Any non-terminal state may also move to cancelled.
    """

    IDLE = "idle"
    VALIDATE = "validate"
    UPLOAD = "upload"
    TEST = "test"
    CONFIRM = "confirm"
    RESET = "reset"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {UpgradeState.SUCCESS, UpgradeState.FAILED, UpgradeState.CANCELLED}
)

VALID_TRANSITIONS: dict[UpgradeState, frozenset[UpgradeState]] = {
    UpgradeState.IDLE: frozenset({UpgradeState.VALIDATE}),
    UpgradeState.VALIDATE: frozenset(
        {UpgradeState.UPLOAD, UpgradeState.FAILED, UpgradeState.CANCELLED}
    ),
    UpgradeState.UPLOAD: frozenset(
        {
            UpgradeState.TEST,
            UpgradeState.CONFIRM,
            UpgradeState.FAILED,
            UpgradeState.CANCELLED,
        }
    ),
    UpgradeState.TEST: frozenset(
        {
            UpgradeState.CONFIRM,
            UpgradeState.RESET,
            UpgradeState.FAILED,
            UpgradeState.CANCELLED,
        }
    ),
    UpgradeState.CONFIRM: frozenset(
        {UpgradeState.RESET, UpgradeState.FAILED, UpgradeState.CANCELLED}
    ),
    UpgradeState.RESET: frozenset(
        {UpgradeState.SUCCESS, UpgradeState.FAILED, UpgradeState.CANCELLED}
    ),
    UpgradeState.SUCCESS: frozenset(),
    UpgradeState.FAILED: frozenset(),
    UpgradeState.CANCELLED: frozenset(),
}


def is_valid_transition(previous: UpgradeState, new: UpgradeState) -> bool:
    """Check a (from, to) pair against the upgrade state graph."""
    return new in VALID_TRANSITIONS.get(previous, frozenset())
