# schoolchat/domain/policy.py
from collections.abc import Iterable

from schoolchat.domain.entities import ApprovalState


class ModerationPolicy:
    """Decides which messages need a moderator before recipients can see them.

    The role pairing is evaluated per message against the thread's current
    participants. Recipients holding a moderator role never form a moderated
    pair.
    """

    def __init__(
        self,
        moderator_roles: Iterable[str],
        moderated_pairs: Iterable[tuple[str, str]],
        staff_roles: Iterable[str] = (),
    ):
        self.moderator_roles = frozenset(moderator_roles)
        self.moderated_pairs = frozenset(
            (sender, recipient) for sender, recipient in moderated_pairs
        )
        self.staff_roles = frozenset(staff_roles)

    @classmethod
    def from_config(cls, config) -> "ModerationPolicy":
        return cls(
            moderator_roles=config.MODERATOR_ROLES,
            moderated_pairs=config.MODERATED_ROLE_PAIRS,
            staff_roles=config.STAFF_ROLES,
        )

    def is_moderator(self, role: str) -> bool:
        return role in self.moderator_roles

    def is_staff(self, role: str) -> bool:
        return role in self.staff_roles or self.is_moderator(role)

    def requires_approval(self, sender_role: str, recipient_roles: Iterable[str]) -> bool:
        for recipient_role in recipient_roles:
            if self.is_moderator(recipient_role):
                continue
            if (sender_role, recipient_role) in self.moderated_pairs:
                return True
        return False

    def initial_state(
        self, sender_role: str, recipient_roles: Iterable[str]
    ) -> ApprovalState:
        if self.requires_approval(sender_role, recipient_roles):
            return ApprovalState.PENDING
        return ApprovalState.APPROVED

    def can_view(
        self, viewer_id: int, viewer_role: str, sender_id: int, state: ApprovalState
    ) -> bool:
        return (
            viewer_id == sender_id
            or self.is_moderator(viewer_role)
            or state == ApprovalState.APPROVED
        )
