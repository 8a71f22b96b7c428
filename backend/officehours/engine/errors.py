"""Exception types raised by the queue engine.

Usage errors are user-correctable and always raised before any state is
mutated. The queue cog turns them into ephemeral replies.
"""

from __future__ import annotations


class OfficeHoursError(Exception):
    """Base class for every engine error."""

    def brief(self) -> str:
        return f"**{type(self).__name__}**: {self}"


class UsageError(OfficeHoursError):
    """User-correctable misuse of a command."""


class QueueError(UsageError):
    """Behavioral error inside one queue."""

    default_message = "Queue operation failed."

    def __init__(self, queue_name: str, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.queue_name = queue_name

    def brief(self) -> str:
        return f"**{type(self).__name__}** at `{self.queue_name}`: {self}"


class AlreadyOpenError(QueueError):
    default_message = "Queue is already open."


class AlreadyClosedError(QueueError):
    default_message = "Queue is already closed."


class QueueNotOpenError(QueueError):
    default_message = "Queue is not open."


class AlreadyInQueueError(QueueError):
    default_message = "You are already in the queue."


class EnqueueHelperError(QueueError):
    default_message = "You can't enqueue yourself while helping."


class QueuePausedError(QueueError):
    default_message = "Every helper of this queue is paused. New participants are not accepted."


class NoPermissionError(QueueError):
    default_message = "You don't have permission to help this queue."


class EmptyQueueError(QueueError):
    default_message = "There's no one in the queue."


class AlreadySubscribedError(QueueError):
    default_message = "You are already in the notification group."


class NotSubscribedError(QueueError):
    default_message = "You are not in the notification group."


class ServerError(UsageError):
    """Behavioral error at the workspace level."""

    default_message = "Workspace operation failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NotHostingError(ServerError):
    default_message = "You are not currently hosting."


class AlreadyHostingError(ServerError):
    default_message = "You are already hosting."


class NoAuthorizedQueuesError(ServerError):
    default_message = (
        "It seems like you are not authorized for any queue. "
        "Ask an admin to give you a queue role."
    )


class NoOneToHelpError(ServerError):
    default_message = "There's no one left to help. You should get some coffee!"


class AlreadyPausedError(ServerError):
    default_message = "You are already paused."


class AlreadyActiveError(ServerError):
    default_message = "You are already actively helping."


class HelperInQueueError(ServerError):
    default_message = "Leave every queue before you start helping."


class QueueDoesNotExistError(ServerError):
    default_message = "This queue does not exist."


class QueueAlreadyExistsError(ServerError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Queue {name} already exists.")
        self.name = name


class StudentNotFoundError(ServerError):
    def __init__(self, participant_id: int) -> None:
        super().__init__(f"<@{participant_id}> is not in any of your queues.")
        self.participant_id = participant_id


class NoStudentToAnnounceError(ServerError):
    default_message = "There's no one in your queues to announce to."


class ServerNotInitializedError(ServerError):
    default_message = "This server is not initialized yet. Try again in a moment."


class UnsafeRenderError(OfficeHoursError):
    """The queue channel holds messages the display did not send.

    Editing in place could overwrite someone else's message, so the caller has
    to run an explicit cleanup before further edits.
    """

    def __init__(self, queue_name: str, panel_index: int) -> None:
        super().__init__(
            f"The channel of `{queue_name}` has messages not sent by the bot. "
            f"Use `/cleanup {queue_name}` to clean it up."
        )
        self.queue_name = queue_name
        self.panel_index = panel_index

