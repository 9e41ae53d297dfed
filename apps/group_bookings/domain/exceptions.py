"""Group membership errors, rejected before any write."""

from shared.domain.exceptions import DomainError


class GroupClosed(DomainError):
    """The group no longer accepts changes (not collecting, or past its expiry)"""

    code = 'group_closed'
    status_code = 409
    default_message = 'This group booking is no longer open'


class GroupFull(GroupClosed):
    code = 'group_full'
    default_message = 'All slots of this group booking are taken'


class DuplicateParticipant(DomainError):
    code = 'duplicate_participant'
    status_code = 409
    default_message = 'You have already joined this group booking'


class OverCommitted(DomainError):
    """Shares would add up to more than the group total"""

    code = 'over_committed'
    status_code = 409
    default_message = 'Share exceeds the amount left to cover in this group booking'


class ParticipantAlreadyPaid(DomainError):
    code = 'participant_already_paid'
    status_code = 409
    default_message = 'This participant has already paid their share'
